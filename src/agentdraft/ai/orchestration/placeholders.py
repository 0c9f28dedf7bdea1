"""Placeholder resolution for tool-generated artifacts.

Media generation tools return the id of a new asset only after they run, so the
model refers to that id with a stand-in. Two forms are understood:

* the structured sentinel ``{"$artifact": "image", "index": 0}``
  (:class:`PendingArtifact`), resolved by kind and producing-call position;
* legacy text tokens such as ``GENERATED_IMAGE_ID``, ``GENERATED_IMAGE_ID_1``,
  ``{{GENERATED_VIDEO_ID}}`` or ``mediaId from generate_image result``.

Inside a turn the tokens are substituted into later tool parameters. After the
loop a final pass over the suggested content replaces placeholders with real
ids, or removes the field when no successful generation backs it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Mapping, Sequence

from .types import ModuleUpdate, SuggestedContent, ToolCall, ToolCallResult

__all__ = [
    "ARTIFACT_TOOLS",
    "PendingArtifact",
    "GeneratedArtifact",
    "ArtifactLedger",
    "is_artifact_tool",
    "partition_artifact_first",
    "build_token_map",
    "resolve_params",
    "resolve_suggested_content",
]

LOGGER = logging.getLogger(__name__)

ARTIFACT_TOOLS: Mapping[str, str] = {
    "generate_image": "image",
    "generate_video": "video",
}

_OPEN = r"(?:\{\{\s*|\[|<)?"
_CLOSE = r"(?:\s*\}\}|\]|>)?"
_TOKEN_BODY = r"GENERATED_(?P<kind>IMAGE|VIDEO)_ID(?:_(?P<index>\d+))?"
_PHRASE_BODY = r"media\s*id\s+from\s+(?:the\s+)?generate_(?P<kind>image|video)\s+(?:tool\s+)?result"

# Whole-value matches, used for the final content pass.
_TOKEN_FULL_RE = re.compile(rf"^\s*{_OPEN}\s*{_TOKEN_BODY}\s*{_CLOSE}\s*$", re.IGNORECASE)
_PHRASE_FULL_RE = re.compile(rf"^\s*{_OPEN}\s*{_PHRASE_BODY}\s*{_CLOSE}\s*$", re.IGNORECASE)

# Embedded matches, used for substitution inside larger strings.
_TOKEN_INLINE_RE = re.compile(
    rf"(?:\{{\{{\s*)?(?<![A-Za-z0-9_]){_TOKEN_BODY}(?![A-Za-z0-9_])(?:\s*\}}\}})?",
    re.IGNORECASE,
)
_PHRASE_INLINE_RE = re.compile(_PHRASE_BODY, re.IGNORECASE)

_REMOVE = object()


# -----------------------------------------------------------------------------
# Artifact references
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PendingArtifact:
    """Reference to an artifact that a tool call produces.

    Attributes:
        kind: ``image`` or ``video``.
        index: Position of the producing call in its turn; ``None`` means the
            most recent artifact of ``kind``.
    """

    kind: str
    index: int | None = None

    MARKER: ClassVar[str] = "$artifact"

    @classmethod
    def parse(cls, value: Any) -> PendingArtifact | None:
        """Return the reference ``value`` stands for, or ``None`` if it is not a placeholder."""
        if isinstance(value, Mapping):
            kind = value.get(cls.MARKER)
            if not isinstance(kind, str) or kind.lower() not in ARTIFACT_TOOLS.values():
                return None
            index = value.get("index")
            return cls(kind=kind.lower(), index=index if isinstance(index, int) else None)
        if not isinstance(value, str):
            return None
        match = _TOKEN_FULL_RE.match(value) or _PHRASE_FULL_RE.match(value)
        if match is None:
            return None
        return cls._from_match(match)

    @classmethod
    def _from_match(cls, match: re.Match[str]) -> PendingArtifact:
        groups = match.groupdict()
        index = groups.get("index")
        return cls(kind=groups["kind"].lower(), index=int(index) if index is not None else None)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {self.MARKER: self.kind}
        if self.index is not None:
            payload["index"] = self.index
        return payload


@dataclass(slots=True, frozen=True)
class GeneratedArtifact:
    """One artifact-tool outcome; ``media_id`` is ``None`` when generation failed."""

    kind: str
    index: int
    media_id: str | None = None
    result: Mapping[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.media_id is not None


class ArtifactLedger:
    """Ordered record of artifact-tool outcomes.

    ``index`` is the position of the producing result within its turn, matching
    the ``GENERATED_IMAGE_ID_<n>`` convention.
    """

    def __init__(self, artifacts: Iterable[GeneratedArtifact] = ()) -> None:
        self._artifacts: list[GeneratedArtifact] = list(artifacts)

    @classmethod
    def from_turn(cls, results: Sequence[ToolCallResult]) -> ArtifactLedger:
        ledger = cls()
        ledger.record_turn(results)
        return ledger

    @classmethod
    def from_turns(cls, turns: Iterable[Sequence[ToolCallResult]]) -> ArtifactLedger:
        ledger = cls()
        for results in turns:
            ledger.record_turn(results)
        return ledger

    def record_turn(self, results: Sequence[ToolCallResult]) -> None:
        for position, result in enumerate(results):
            kind = ARTIFACT_TOOLS.get(result.tool)
            if kind is None:
                continue
            media_id = result.result_field("mediaId")
            payload = result.result if isinstance(result.result, Mapping) else {}
            self._artifacts.append(
                GeneratedArtifact(
                    kind=kind,
                    index=position,
                    media_id=str(media_id) if media_id is not None else None,
                    result=payload,
                )
            )

    def __len__(self) -> int:
        return len(self._artifacts)

    @property
    def artifacts(self) -> tuple[GeneratedArtifact, ...]:
        return tuple(self._artifacts)

    def latest(self, kind: str) -> GeneratedArtifact | None:
        for artifact in reversed(self._artifacts):
            if artifact.kind == kind and artifact.succeeded:
                return artifact
        return None

    def resolve(self, ref: PendingArtifact) -> str | None:
        if ref.index is None:
            artifact = self.latest(ref.kind)
            return artifact.media_id if artifact else None
        for artifact in reversed(self._artifacts):
            if artifact.kind == ref.kind and artifact.index == ref.index:
                return artifact.media_id
        return None

    def token_map(self) -> dict[str, str]:
        tokens: dict[str, str] = {}
        for artifact in self._artifacts:
            if not artifact.succeeded:
                continue
            upper = artifact.kind.upper()
            tokens[f"GENERATED_{upper}_ID_{artifact.index}"] = artifact.media_id  # type: ignore[assignment]
            tokens[f"GENERATED_{upper}_ID"] = artifact.media_id  # type: ignore[assignment]
            if artifact.kind == "image":
                tokens["mediaId from generate_image result"] = artifact.media_id  # type: ignore[assignment]
        return tokens


# -----------------------------------------------------------------------------
# Intra-turn helpers
# -----------------------------------------------------------------------------


def is_artifact_tool(name: str) -> bool:
    return name in ARTIFACT_TOOLS


def partition_artifact_first(calls: Sequence[ToolCall]) -> list[ToolCall]:
    """Stable partition putting artifact-generating calls before all others."""
    artifact_calls = [call for call in calls if is_artifact_tool(call.name)]
    other_calls = [call for call in calls if not is_artifact_tool(call.name)]
    return artifact_calls + other_calls


def build_token_map(results: Sequence[ToolCallResult]) -> dict[str, str]:
    """Token to media id map for the results collected so far in one turn."""
    return ArtifactLedger.from_turn(results).token_map()


def resolve_params(params: Any, ledger: ArtifactLedger) -> Any:
    """Return ``params`` with every resolvable placeholder replaced.

    Unresolvable placeholders are left as-is; the tool sees what the model wrote.
    """
    if not len(ledger):
        return params
    return _walk(params, ledger, remove_unresolved=False)


# -----------------------------------------------------------------------------
# Final content pass
# -----------------------------------------------------------------------------


def resolve_suggested_content(content: SuggestedContent, ledger: ArtifactLedger) -> SuggestedContent:
    """Resolve placeholders in post fields and module trees.

    A placeholder without a successful generation behind it is removed: list
    items are dropped and mapping keys deleted.
    """
    post = content.post
    if post is not None:
        post = _walk(post, ledger, remove_unresolved=True)
        if post is _REMOVE:
            post = {}
    modules = []
    for module in content.modules:
        props = _walk(module.props, ledger, remove_unresolved=True)
        overrides = _walk(module.overrides, ledger, remove_unresolved=True)
        modules.append(
            ModuleUpdate(
                type=module.type,
                order_index=module.order_index,
                props=props if props is not _REMOVE else {},
                overrides=overrides if overrides is not _REMOVE else {},
            )
        )
    return SuggestedContent(
        post=post,
        modules=tuple(modules),
        redirect_post_id=content.redirect_post_id,
        extras=content.extras,
    )


def _walk(value: Any, ledger: ArtifactLedger, *, remove_unresolved: bool) -> Any:
    ref = PendingArtifact.parse(value)
    if ref is not None:
        media_id = ledger.resolve(ref)
        if media_id is not None:
            return media_id
        if remove_unresolved:
            LOGGER.warning("Removing unresolved %s placeholder from suggested content", ref.kind)
            return _REMOVE
        return value
    if isinstance(value, str):
        return _substitute_inline(value, ledger)
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            resolved = _walk(item, ledger, remove_unresolved=remove_unresolved)
            if resolved is _REMOVE:
                continue
            result[key] = resolved
        return result
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            resolved = _walk(item, ledger, remove_unresolved=remove_unresolved)
            if resolved is _REMOVE:
                continue
            items.append(resolved)
        return items
    return value


def _substitute_inline(text: str, ledger: ArtifactLedger) -> str:
    if "generat" not in text.lower():
        return text

    def replace(match: re.Match[str]) -> str:
        media_id = ledger.resolve(PendingArtifact._from_match(match))
        return media_id if media_id is not None else match.group(0)

    text = _TOKEN_INLINE_RE.sub(replace, text)
    return _PHRASE_INLINE_RE.sub(replace, text)
