"""Field-scope targeting helpers.

A field-scoped invocation carries a ``fieldKey`` such as ``post.title`` or
``module.hero.image.src``. These helpers decode the key, pin the module
instance being edited, and place generated media ids at the exact nested path.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

from ..ai.orchestration.errors import ModuleTargetError
from ..ai.orchestration.placeholders import ARTIFACT_TOOLS
from ..ai.orchestration.types import ModuleUpdate, ToolCallResult
from .store import ModuleRecord

__all__ = [
    "FieldTarget",
    "MEDIA_FIELD_TYPES",
    "decode_field_key",
    "resolve_field_target",
    "inject_field_target",
    "match_modules",
    "latest_media_result",
    "place_field_media",
]

LOGGER = logging.getLogger(__name__)

MEDIA_FIELD_TYPES = frozenset({"media", "image", "video"})

# Sibling key -> result keys it may be filled from.
_SIBLING_SOURCES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("alt", ("altText", "alt")),
    ("description", ("description", "caption")),
)


@dataclass(slots=True, frozen=True)
class FieldTarget:
    """Decoded ``fieldKey``.

    Attributes:
        kind: ``post`` or ``module``.
        path: Field path; for modules it is relative to the props object.
        module_type: Module type for module targets.
        order_index: Pinned module instance, when it could be determined.
    """

    kind: Literal["post", "module"]
    path: tuple[str, ...]
    module_type: str | None = None
    order_index: int | None = None

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path)

    def pinned(self, order_index: int | None) -> FieldTarget:
        return FieldTarget(
            kind=self.kind,
            path=self.path,
            module_type=self.module_type,
            order_index=order_index,
        )


def decode_field_key(field_key: str | None) -> FieldTarget | None:
    """Decode ``post.<field>`` / ``module.<type>.<path>``; bare keys are post fields."""
    if not field_key:
        return None
    parts = tuple(part for part in str(field_key).split(".") if part)
    if not parts:
        return None
    head = parts[0]
    if head == "module":
        if len(parts) < 3:
            LOGGER.debug("Ignoring module field key without a path: %s", field_key)
            return None
        return FieldTarget(kind="module", path=parts[2:], module_type=parts[1])
    if head == "post":
        if len(parts) < 2:
            return None
        return FieldTarget(kind="post", path=parts[1:])
    return FieldTarget(kind="post", path=parts)


def resolve_field_target(
    field_key: str | None,
    context: Mapping[str, Any],
    modules: Sequence[ModuleRecord],
) -> FieldTarget | None:
    """Decode ``field_key`` and pin the module instance named in ``context``.

    The instance is looked up by ``postModuleId`` or ``moduleInstanceId``; an
    explicit ``orderIndex`` in the context wins over both.
    """
    target = decode_field_key(field_key)
    if target is None or target.kind != "module":
        return target

    explicit = context.get("orderIndex")
    if isinstance(explicit, int) and not isinstance(explicit, bool):
        return target.pinned(explicit)

    post_module_id = context.get("postModuleId")
    instance_id = context.get("moduleInstanceId")
    for module in modules:
        if module.type != target.module_type:
            continue
        if post_module_id and module.post_module_id == str(post_module_id):
            return target.pinned(module.order_index)
        if instance_id and module.module_instance_id == str(instance_id):
            return target.pinned(module.order_index)

    candidates = [module for module in modules if module.type == target.module_type]
    if len(candidates) == 1:
        return target.pinned(candidates[0].order_index)
    return target


# -----------------------------------------------------------------------------
# Payload rewriting
# -----------------------------------------------------------------------------


def inject_field_target(payload: Mapping[str, Any], target: FieldTarget | None) -> dict[str, Any]:
    """Stamp the pinned module type/orderIndex onto module entries lacking them.

    Field-scoped agents edit a single instance; without the stamp a bare
    ``{"type": "hero", ...}`` would fan out to every hero on the post.
    """
    result = dict(payload)
    if target is None or target.kind != "module":
        return result
    modules = result.get("modules")
    if not isinstance(modules, list):
        return result

    stamped = []
    for entry in modules:
        if not isinstance(entry, Mapping):
            stamped.append(entry)
            continue
        entry = dict(entry)
        entry.setdefault("type", target.module_type)
        if (
            entry.get("type") == target.module_type
            and entry.get("orderIndex") is None
            and target.order_index is not None
        ):
            entry["orderIndex"] = target.order_index
        stamped.append(entry)
    result["modules"] = stamped
    return result


def match_modules(modules: Sequence[ModuleRecord], update: ModuleUpdate) -> list[ModuleRecord]:
    """Return the module instances ``update`` targets.

    With an ``order_index`` exactly the instance at that position is returned;
    without one every instance of the type is. No match raises
    :class:`ModuleTargetError`.
    """
    matches = [
        module
        for module in modules
        if module.type == update.type
        and (update.order_index is None or module.order_index == update.order_index)
    ]
    if not matches:
        where = f" at orderIndex {update.order_index}" if update.order_index is not None else ""
        raise ModuleTargetError(
            message=f"Module '{update.type}'{where} not found on post",
            details={"type": update.type, "orderIndex": update.order_index},
            module_type=update.type,
            order_index=update.order_index,
        )
    return sorted(matches, key=lambda module: module.order_index)


# -----------------------------------------------------------------------------
# Media placement
# -----------------------------------------------------------------------------


def latest_media_result(results: Sequence[ToolCallResult]) -> ToolCallResult | None:
    """Most recent successful media-generation result carrying a ``mediaId``."""
    for result in reversed(results):
        if result.tool in ARTIFACT_TOOLS and result.result_field("mediaId") is not None:
            return result
    return None


def place_field_media(
    payload: Mapping[str, Any],
    target: FieldTarget,
    results: Sequence[ToolCallResult],
    *,
    base_props: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Write the generated media id at ``target``'s path inside ``payload``.

    ``base_props`` supplies existing arrays so numeric path segments can address
    an element without replacing the array. Sibling ``alt``/``description`` keys
    are filled from the tool result when the model did not set them.
    """
    result = latest_media_result(results)
    if result is None:
        return dict(payload)
    media_id = str(result.result_field("mediaId"))
    output = copy.deepcopy(dict(payload))

    try:
        if target.kind == "post":
            post = output.get("post")
            post = dict(post) if isinstance(post, Mapping) else {}
            _set_path(post, target.path, media_id, None)
            output["post"] = post
        else:
            entry = _module_entry(output, target)
            props = entry.setdefault("props", {})
            parent, created = _set_path(props, target.path, media_id, base_props)
            if isinstance(parent, dict):
                _fill_siblings(parent, target.path[-1], result, overwrite=created)
    except ValueError as exc:
        LOGGER.warning("Could not place generated media at %s: %s", target.dotted_path, exc)
        return dict(payload)

    LOGGER.debug("Placed generated media %s at %s", media_id, target.dotted_path)
    return output


def _module_entry(payload: dict[str, Any], target: FieldTarget) -> dict[str, Any]:
    modules = payload.get("modules")
    if not isinstance(modules, list):
        modules = []
        payload["modules"] = modules
    for position, entry in enumerate(modules):
        if not isinstance(entry, Mapping) or entry.get("type") != target.module_type:
            continue
        index = entry.get("orderIndex")
        if target.order_index is None or index is None or index == target.order_index:
            entry = dict(entry)
            if target.order_index is not None:
                entry["orderIndex"] = target.order_index
            if not isinstance(entry.get("props"), dict):
                entry["props"] = dict(entry.get("props") or {})
            modules[position] = entry
            return entry
    entry = {"type": target.module_type, "props": {}}
    if target.order_index is not None:
        entry["orderIndex"] = target.order_index
    modules.append(entry)
    return entry


def _child(container: Any, segment: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(segment)
    if isinstance(container, list) and segment.isdigit():
        position = int(segment)
        if position < len(container):
            return container[position]
    return None


def _assign(container: Any, segment: str, value: Any) -> None:
    if isinstance(container, list):
        if not segment.isdigit():
            raise ValueError(f"Cannot address list with key {segment!r}")
        position = int(segment)
        if position < len(container):
            container[position] = value
        elif position == len(container):
            container.append(value)
        else:
            raise ValueError(f"List index {position} out of range")
        return
    container[segment] = value


def _set_path(
    root: dict[str, Any],
    path: Sequence[str],
    value: Any,
    base: Mapping[str, Any] | None,
) -> tuple[Any, bool]:
    """Set ``value`` at ``path``; return ``(parent, parent_was_created)``."""
    node: Any = root
    base_node: Any = base
    created = False
    for segment in path[:-1]:
        next_base = _child(base_node, segment)
        existing = _child(node, segment)
        if not isinstance(existing, (dict, list)):
            existing = copy.deepcopy(next_base) if isinstance(next_base, (dict, list)) else {}
            _assign(node, segment, existing)
            created = True
        else:
            created = False
        node = existing
        base_node = next_base
    _assign(node, path[-1], value)
    return node, created


def _fill_siblings(
    parent: dict[str, Any],
    leaf: str,
    result: ToolCallResult,
    *,
    overwrite: bool,
) -> None:
    for key, sources in _SIBLING_SOURCES:
        if key == leaf:
            continue
        if not overwrite and parent.get(key):
            continue
        value = result.result_field(*sources)
        if isinstance(value, str) and value:
            parent[key] = value
