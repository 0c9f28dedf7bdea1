"""Module schema registry.

Only the field kinds that change how suggestions are merged are modelled:
rich-text fields (Markdown is converted to structured content) and reference
fields stored by identifier (``{"id": ...}`` is flattened).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

__all__ = ["FieldSpec", "ModuleSchema", "ModuleRegistry", "RICHTEXT", "REFERENCE_KINDS"]

RICHTEXT = "richtext"
REFERENCE_KINDS = frozenset({"media", "reference", "post-reference"})


@dataclass(slots=True, frozen=True)
class FieldSpec:
    """One field of a module schema.

    Attributes:
        name: Prop key.
        kind: Field type (``text``, ``richtext``, ``media`` ...).
        store_as_id: Reference fields persist the bare identifier.
    """

    name: str
    kind: str = "text"
    store_as_id: bool = False

    @property
    def is_richtext(self) -> bool:
        return self.kind == RICHTEXT

    @property
    def is_id_reference(self) -> bool:
        return self.store_as_id and self.kind in REFERENCE_KINDS


@dataclass(slots=True, frozen=True)
class ModuleSchema:
    type: str
    fields: Mapping[str, FieldSpec] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ModuleSchema:
        specs: dict[str, FieldSpec] = {}
        for entry in data.get("fields") or ():
            name = entry.get("name") or entry.get("slug")
            if not name:
                continue
            kind = str(entry.get("kind") or entry.get("type") or "text")
            store_as_id = bool(entry.get("store_as_id", entry.get("storeAs") == "id"))
            specs[name] = FieldSpec(name=name, kind=kind, store_as_id=store_as_id)
        return cls(type=str(data["type"]), fields=specs)

    def richtext_fields(self) -> tuple[str, ...]:
        return tuple(name for name, spec in self.fields.items() if spec.is_richtext)

    def id_reference_fields(self) -> tuple[str, ...]:
        return tuple(name for name, spec in self.fields.items() if spec.is_id_reference)


class ModuleRegistry:
    """Explicitly constructed lookup of module schemas by type."""

    def __init__(self, schemas: Iterable[ModuleSchema] = ()) -> None:
        self._schemas = {schema.type: schema for schema in schemas}

    @classmethod
    def from_mappings(cls, entries: Iterable[Mapping[str, Any]]) -> ModuleRegistry:
        return cls(ModuleSchema.from_mapping(entry) for entry in entries)

    def __contains__(self, module_type: object) -> bool:
        return module_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def get(self, module_type: str) -> ModuleSchema | None:
        return self._schemas.get(module_type)
