"""Core type definitions for the turn loop.

This module defines the immutable dataclasses that flow between the turn loop,
the placeholder resolver and the merge stage. Types are frozen so they can be
shared across stages without defensive copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from ..ai_types import CompletionUsage

__all__ = [
    # Model interaction types
    "Message",
    "ToolCall",
    "ToolCallResult",
    # Audit trail
    "TranscriptEntry",
    # Suggestion types
    "ModuleUpdate",
    "SuggestedContent",
    "POST_FIELD_KEYS",
    # Loop output
    "LoopOutput",
]

# Post-level fields recognized when the model omits the ``post`` wrapper.
POST_FIELD_KEYS: tuple[str, ...] = (
    "title",
    "slug",
    "excerpt",
    "metaTitle",
    "metaDescription",
    "status",
    "featuredImageId",
)


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        metadata: Additional metadata (not sent to model).
    """

    role: MessageRole
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_chat_param(self) -> dict[str, str]:
        """Convert to the OpenAI chat message format."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> Message:
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(cls, content: str, **metadata: Any) -> Message:
        return cls(role="assistant", content=content, metadata=metadata)


# -----------------------------------------------------------------------------
# Tool Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool call proposed by the model.

    Attributes:
        name: Tool name (``tool`` or ``tool_name`` in model output).
        params: Parameter object (``params`` or ``arguments``).
        index: Position of the call in the model's ``tool_calls`` array.
    """

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    index: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], index: int = 0) -> ToolCall:
        name = data.get("tool") or data.get("tool_name") or data.get("name") or ""
        params = data.get("params")
        if params is None:
            params = data.get("arguments")
        if not isinstance(params, Mapping):
            params = {}
        return cls(name=str(name), params=dict(params), index=index)

    def with_params(self, params: Mapping[str, Any]) -> ToolCall:
        return ToolCall(name=self.name, params=params, index=self.index)

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.name, "params": dict(self.params)}


@dataclass(slots=True, frozen=True)
class ToolCallResult:
    """Outcome of a single tool call: a success payload or an error description."""

    tool: str
    success: bool
    result: Any = None
    error: str | None = None
    index: int = 0
    duration_ms: float = 0.0

    @classmethod
    def from_success(cls, call: ToolCall, result: Any, duration_ms: float = 0.0) -> ToolCallResult:
        return cls(
            tool=call.name,
            success=True,
            result=result,
            index=call.index,
            duration_ms=duration_ms,
        )

    @classmethod
    def from_error(cls, call: ToolCall, error: str, duration_ms: float = 0.0) -> ToolCallResult:
        return cls(
            tool=call.name,
            success=False,
            error=error,
            index=call.index,
            duration_ms=duration_ms,
        )

    def result_field(self, *keys: str) -> Any:
        """Return the first present key of a mapping result, else ``None``."""
        if not self.success or not isinstance(self.result, Mapping):
            return None
        for key in keys:
            value = self.result.get(key)
            if value is not None:
                return value
        return None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"tool": self.tool, "success": True, "result": self.result}
        return {"tool": self.tool, "success": False, "error": self.error}


# -----------------------------------------------------------------------------
# Transcript
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TranscriptEntry:
    """Append-only audit record of one turn.

    ``determination`` and ``raw_response`` are only populated in debug mode.
    """

    turn: int
    summary: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolCallResult, ...] = ()
    determination: str | None = None
    raw_response: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "turn": self.turn,
            "summary": self.summary,
            "toolCalls": [call.to_dict() for call in self.tool_calls],
            "toolResults": [result.to_dict() for result in self.tool_results],
        }
        if self.determination is not None:
            payload["determination"] = self.determination
        if self.raw_response is not None:
            payload["rawResponse"] = self.raw_response
        return payload


# -----------------------------------------------------------------------------
# Suggested Content
# -----------------------------------------------------------------------------


def _optional_index(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True, frozen=True)
class ModuleUpdate:
    """A sparse update for module instances of ``type``.

    ``order_index`` of ``None`` fans the update out to every instance of the type.
    """

    type: str
    order_index: int | None = None
    props: Mapping[str, Any] = field(default_factory=dict)
    overrides: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ModuleUpdate | None:
        module_type = data.get("type")
        if not isinstance(module_type, str) or not module_type:
            return None
        props = data.get("props")
        overrides = data.get("overrides")
        return cls(
            type=module_type,
            order_index=_optional_index(data.get("orderIndex", data.get("order_index"))),
            props=dict(props) if isinstance(props, Mapping) else {},
            overrides=dict(overrides) if isinstance(overrides, Mapping) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.order_index is not None:
            payload["orderIndex"] = self.order_index
        if self.props:
            payload["props"] = dict(self.props)
        if self.overrides:
            payload["overrides"] = dict(self.overrides)
        return payload


@dataclass(slots=True, frozen=True)
class SuggestedContent:
    """The terminal output of a turn loop.

    Attributes:
        post: Sparse post-level fields; ``None`` when the model proposed none.
        modules: Sparse module updates.
        redirect_post_id: New post the caller should navigate to.
        extras: Any other top-level keys the model returned, kept verbatim.
    """

    post: Mapping[str, Any] | None = None
    modules: tuple[ModuleUpdate, ...] = ()
    redirect_post_id: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> SuggestedContent:
        """Validate an open JSON mapping into the tagged result type.

        Malformed ``post``/``modules`` values are dropped rather than raised.
        """
        data = dict(payload)
        post = data.pop("post", None)
        raw_modules = data.pop("modules", None)
        redirect = data.pop("redirectPostId", None)
        modules: list[ModuleUpdate] = []
        if isinstance(raw_modules, Sequence) and not isinstance(raw_modules, str):
            for entry in raw_modules:
                if isinstance(entry, Mapping):
                    update = ModuleUpdate.from_mapping(entry)
                    if update is not None:
                        modules.append(update)
        return cls(
            post=dict(post) if isinstance(post, Mapping) else None,
            modules=tuple(modules),
            redirect_post_id=str(redirect) if redirect not in (None, "") else None,
            extras=data,
        )

    @property
    def has_changes(self) -> bool:
        return bool(self.post) or bool(self.modules)

    def without_changes(self, redirect_post_id: str | None = None) -> SuggestedContent:
        """Copy with ``post``/``modules`` dropped (redirect safety)."""
        return SuggestedContent(
            post=None,
            modules=(),
            redirect_post_id=redirect_post_id or self.redirect_post_id,
            extras=self.extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extras)
        if self.post is not None:
            payload["post"] = dict(self.post)
        if self.modules:
            payload["modules"] = [module.to_dict() for module in self.modules]
        if self.redirect_post_id is not None:
            payload["redirectPostId"] = self.redirect_post_id
        return payload


# -----------------------------------------------------------------------------
# Loop Output
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LoopOutput:
    """What the turn loop hands to finalization.

    Attributes:
        raw_response: Terminal completion text.
        parsed: JSON object parsed from the terminal text, if any.
        transcript: One entry per tool-executing turn.
        tool_results: Every tool result from every turn, in execution order.
        created_post_id: Last id returned by a content-creation tool.
        turns: Number of completions performed.
        incomplete: True when the turn cap stopped a still-working model.
        usage: Summed token usage.
        model: Model reported by the provider.
    """

    raw_response: str
    parsed: Mapping[str, Any] | None = None
    transcript: tuple[TranscriptEntry, ...] = ()
    tool_results: tuple[ToolCallResult, ...] = ()
    created_post_id: str | None = None
    turns: int = 0
    incomplete: bool = False
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    model: str | None = None
