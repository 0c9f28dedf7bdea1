"""Draft Merge Engine.

Turns validated suggested content into a :class:`MergePlan`: the exact tier
columns to write and their new values. Planning is pure; the plan is handed to
a :class:`~agentdraft.drafts.store.DraftStore` which applies it atomically.

Every written value is ``recursive_merge(recursive_merge(base, existing), incoming)``
where ``base`` is the live value (layered under the review draft when targeting
``ai-review``), ``existing`` is the current content of the target tier and
``incoming`` is the sparse suggestion. Absent keys never clear anything, so
applying the same suggestion twice yields the same tier.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..ai.orchestration.errors import ConfigurationError, ModuleTargetError
from ..ai.orchestration.types import ModuleUpdate, SuggestedContent
from .richtext import looks_structured, markdown_to_richtext
from .schema import ModuleRegistry
from .store import (
    OVERRIDES_COLUMNS,
    POST_COLUMNS,
    PROPS_COLUMNS,
    TIERS,
    ModuleRecord,
    PostRecord,
)
from .targeting import match_modules

__all__ = [
    "recursive_merge",
    "select_target_tier",
    "layer_base",
    "ModuleWrite",
    "MergePlan",
    "DraftMergeEngine",
]

LOGGER = logging.getLogger(__name__)


def recursive_merge(base: Mapping[str, Any] | None, incoming: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge ``incoming`` over ``base``.

    Mapping values merge key by key; any other incoming value (arrays included)
    replaces the base value wholesale. Neither argument is mutated.
    """
    result: dict[str, Any] = copy.deepcopy(dict(base or {}))
    for key, value in (incoming or {}).items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = recursive_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def select_target_tier(scope: str, view_mode: str | None = None, *, agent_type: str = "internal") -> str:
    """Field-scoped edits land in the tier being viewed; everything else in ``ai-review``.

    Webhook (``external``) agents outside field scope write the ``review`` tier.
    Only a missing view mode defaults to ``source``; an unrecognised one raises
    :class:`ConfigurationError` rather than writing live content.
    """
    if scope != "field":
        return "review" if agent_type == "external" else "ai-review"
    tier = view_mode or "source"
    if tier not in TIERS:
        raise ConfigurationError(
            f"Unknown view mode: {tier}",
            details={"view_mode": tier, "supported": list(TIERS)},
        )
    return tier


def layer_base(
    live: Mapping[str, Any] | None,
    review: Mapping[str, Any] | None,
    tier: str,
) -> dict[str, Any]:
    """Base a tier builds on: the live value, under the review draft for ``ai-review``."""
    if tier == "ai-review" and review:
        return recursive_merge(live, review)
    return dict(live or {})


# -----------------------------------------------------------------------------
# Plan
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModuleWrite:
    """Full new value of one module tier column."""

    post_module_id: str
    module_instance_id: str
    module_type: str
    order_index: int
    layer: str
    column: str
    value: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "postModuleId": self.post_module_id,
            "moduleInstanceId": self.module_instance_id,
            "type": self.module_type,
            "orderIndex": self.order_index,
            "layer": self.layer,
            "column": self.column,
            "value": copy.deepcopy(dict(self.value)),
        }


@dataclass(slots=True, frozen=True)
class MergePlan:
    """Writes computed for one suggestion.

    Attributes:
        post_id: Post being written.
        tier: Target draft tier.
        base_version: Tier version the plan was computed against.
        post_fields: New value of the post tier column, or ``None`` when unchanged.
        module_writes: New module column values.
        applied: Human-readable list of changed targets.
        skipped: Module updates that matched nothing.
    """

    post_id: str
    tier: str
    base_version: int = 0
    post_fields: Mapping[str, Any] | None = None
    module_writes: tuple[ModuleWrite, ...] = ()
    applied: tuple[str, ...] = ()
    skipped: tuple[Mapping[str, Any], ...] = ()

    @property
    def post_column(self) -> str:
        return POST_COLUMNS[self.tier]

    @property
    def is_empty(self) -> bool:
        return self.post_fields is None and not self.module_writes

    def snapshot(self) -> dict[str, Any]:
        return {
            "tier": self.tier,
            "post": copy.deepcopy(dict(self.post_fields)) if self.post_fields is not None else None,
            "modules": [write.to_dict() for write in self.module_writes],
            "applied": list(self.applied),
        }


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


class DraftMergeEngine:
    """Plans tier writes for suggested content.

    Rich-text module fields given as Markdown are converted to structured
    content, and reference fields stored by id have ``{"id": ...}`` flattened.
    """

    def __init__(self, registry: ModuleRegistry | None = None) -> None:
        self._registry = registry or ModuleRegistry()

    def plan(
        self,
        post: PostRecord,
        suggestions: SuggestedContent,
        *,
        tier: str,
        base_version: int = 0,
    ) -> MergePlan:
        if tier not in TIERS:
            raise ValueError(f"Unknown draft tier: {tier}")

        applied: list[str] = []
        skipped: list[Mapping[str, Any]] = []

        post_fields: dict[str, Any] | None = None
        if suggestions.post:
            incoming = self.normalize_post_fields(suggestions.post)
            base = layer_base(post.fields, post.review_draft, tier)
            existing = post.column(POST_COLUMNS[tier]) if tier != "source" else None
            prior = recursive_merge(base, existing)
            post_fields = recursive_merge(prior, incoming)
            applied.extend(
                f"post.{key}"
                for key in incoming
                if key not in prior or post_fields[key] != prior[key]
            )

        staged: dict[tuple[str, str], ModuleWrite] = {}
        for update in suggestions.modules:
            try:
                matches = match_modules(post.modules, update)
            except ModuleTargetError as exc:
                LOGGER.warning("Skipping module update: %s", exc.message)
                skipped.append(exc.to_dict())
                continue
            changed = [module for module in matches if self._plan_module(module, update, tier, staged)]
            if not changed:
                continue
            if update.order_index is None:
                applied.append(f"module.{update.type}")
            else:
                applied.append(f"module.{update.type}[{update.order_index}]")

        return MergePlan(
            post_id=post.id,
            tier=tier,
            base_version=base_version,
            post_fields=post_fields,
            module_writes=tuple(staged.values()),
            applied=tuple(applied),
            skipped=tuple(skipped),
        )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------
    def normalize_module_props(self, module_type: str, props: Mapping[str, Any]) -> dict[str, Any]:
        normalized = dict(props)
        schema = self._registry.get(module_type)
        if schema is None:
            return normalized
        for name in schema.richtext_fields():
            value = normalized.get(name)
            if isinstance(value, str) and not looks_structured(value):
                normalized[name] = markdown_to_richtext(value)
        for name in schema.id_reference_fields():
            if name in normalized:
                normalized[name] = _flatten_reference(normalized[name])
        return normalized

    @staticmethod
    def normalize_post_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
        normalized = dict(fields)
        for key, value in fields.items():
            if key.endswith("Id") and isinstance(value, Mapping) and "id" in value:
                normalized[key] = _flatten_reference(value)
        return normalized

    # ------------------------------------------------------------------
    # Module layers
    # ------------------------------------------------------------------
    def _plan_module(
        self,
        module: ModuleRecord,
        update: ModuleUpdate,
        tier: str,
        staged: dict[tuple[str, str], ModuleWrite],
    ) -> bool:
        props = self.normalize_module_props(module.type, update.props)
        overrides = self.normalize_module_props(module.type, update.overrides)

        if module.is_global:
            # Shared instances are never edited through a post; changes land in overrides.
            incoming = recursive_merge(props, overrides)
            if not incoming:
                return False
            self._stage_layer(module, "overrides", incoming, tier, staged)
            return True

        changed = False
        if props:
            self._stage_layer(module, "props", props, tier, staged)
            changed = True
        if overrides:
            self._stage_layer(module, "overrides", overrides, tier, staged)
            changed = True
        return changed

    def _stage_layer(
        self,
        module: ModuleRecord,
        layer: str,
        incoming: Mapping[str, Any],
        tier: str,
        staged: dict[tuple[str, str], ModuleWrite],
    ) -> None:
        columns = PROPS_COLUMNS if layer == "props" else OVERRIDES_COLUMNS
        column = columns[tier]
        key = (module.post_module_id, column)

        live = module.column(columns["source"])
        review = module.column(columns["review"])
        base = layer_base(live, review, tier)
        if key in staged:
            existing: Mapping[str, Any] | None = staged[key].value
        else:
            existing = module.column(column) if tier != "source" else None

        staged[key] = ModuleWrite(
            post_module_id=module.post_module_id,
            module_instance_id=module.module_instance_id,
            module_type=module.type,
            order_index=module.order_index,
            layer=layer,
            column=column,
            value=recursive_merge(recursive_merge(base, existing), incoming),
        )


def _flatten_reference(value: Any) -> Any:
    if isinstance(value, Mapping) and "id" in value:
        ref = value["id"]
        return str(ref) if ref is not None else None
    return value
