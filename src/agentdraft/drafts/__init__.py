"""Draft tiers: schema registry, rich-text conversion, merge planning and storage."""

from .merge import DraftMergeEngine, MergePlan, ModuleWrite, layer_base, recursive_merge, select_target_tier
from .richtext import looks_structured, markdown_to_richtext
from .schema import FieldSpec, ModuleRegistry, ModuleSchema
from .store import (
    OVERRIDES_COLUMNS,
    POST_COLUMNS,
    PROPS_COLUMNS,
    TIERS,
    DraftStore,
    InMemoryDraftStore,
    ModuleRecord,
    PostRecord,
    Revision,
)
from .targeting import (
    FieldTarget,
    decode_field_key,
    inject_field_target,
    match_modules,
    place_field_media,
    resolve_field_target,
)

__all__ = [
    "DraftMergeEngine",
    "MergePlan",
    "ModuleWrite",
    "layer_base",
    "recursive_merge",
    "select_target_tier",
    "looks_structured",
    "markdown_to_richtext",
    "FieldSpec",
    "ModuleRegistry",
    "ModuleSchema",
    "OVERRIDES_COLUMNS",
    "POST_COLUMNS",
    "PROPS_COLUMNS",
    "TIERS",
    "DraftStore",
    "InMemoryDraftStore",
    "ModuleRecord",
    "PostRecord",
    "Revision",
    "FieldTarget",
    "decode_field_key",
    "inject_field_target",
    "match_modules",
    "place_field_media",
    "resolve_field_target",
]
