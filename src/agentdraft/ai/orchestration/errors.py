"""Error taxonomy for agent execution and draft merging.

Every error serializes to a small JSON-friendly mapping via ``to_dict`` so the
execution session can hand a single, secret-free error object to its caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "AgentDraftError",
    "ConfigurationError",
    "ProviderError",
    "ExternalAgentError",
    "ToolNotAllowedError",
    "ModuleTargetError",
    "PersistenceError",
    "DraftConflictError",
]


class ErrorCode:
    """Constants for machine-readable error codes."""

    CONFIGURATION = "configuration_error"
    PROVIDER = "provider_error"
    EXTERNAL_AGENT = "external_agent_error"
    TOOL_NOT_ALLOWED = "tool_not_allowed"
    MODULE_NOT_FOUND = "module_not_found"
    PERSISTENCE = "persistence_error"
    DRAFT_CONFLICT = "draft_conflict"
    INTERNAL_ERROR = "internal_error"


@dataclass
class AgentDraftError(Exception):
    """Base exception for every error raised by the engine.

    Attributes:
        message: Human-readable error description.
        details: Additional structured, non-secret diagnostic information.
    """

    message: str
    details: dict[str, Any] = field(default_factory=dict)

    error_code: ClassVar[str] = ErrorCode.INTERNAL_ERROR
    retryable: ClassVar[bool] = False

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for result payloads."""
        result: dict[str, Any] = {
            "type": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.retryable:
            result["retryable"] = True
        return result

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(AgentDraftError):
    """Missing or invalid agent/provider configuration, or a rejected request."""

    error_code: ClassVar[str] = ErrorCode.CONFIGURATION


@dataclass
class ProviderError(AgentDraftError):
    """The completion provider answered, but without anything usable."""

    error_code: ClassVar[str] = ErrorCode.PROVIDER


@dataclass
class ExternalAgentError(AgentDraftError):
    """A webhook agent failed, timed out or returned a non-success status.

    Attributes:
        status_code: HTTP status returned by the webhook, when there was one.
    """

    status_code: int | None = None

    error_code: ClassVar[str] = ErrorCode.EXTERNAL_AGENT

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result.setdefault("details", {})["status_code"] = self.status_code
        return result


@dataclass
class ToolNotAllowedError(AgentDraftError):
    """A tool call named a tool outside the agent's allow-list."""

    tool: str = ""

    error_code: ClassVar[str] = ErrorCode.TOOL_NOT_ALLOWED

    @classmethod
    def for_tool(cls, tool: str) -> ToolNotAllowedError:
        return cls(message=f"Tool '{tool}' is not in the allowed list", tool=tool)


@dataclass
class ModuleTargetError(AgentDraftError):
    """A suggested module update matched no module instance on the post."""

    module_type: str = ""
    order_index: int | None = None

    error_code: ClassVar[str] = ErrorCode.MODULE_NOT_FOUND


@dataclass
class PersistenceError(AgentDraftError):
    """A write to the draft store failed; fatal for the whole operation.

    Attributes:
        entity: Table/entity name that failed (e.g. ``posts``).
        entity_id: Identifier of the row being written.
        column: Tier column being written (e.g. ``ai_review_draft``).
    """

    entity: str = ""
    entity_id: str | None = None
    column: str | None = None

    error_code: ClassVar[str] = ErrorCode.PERSISTENCE

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        diagnostics = {
            "entity": self.entity or None,
            "entity_id": self.entity_id,
            "column": self.column,
        }
        result.setdefault("details", {}).update(
            {key: value for key, value in diagnostics.items() if value is not None}
        )
        return result


@dataclass
class DraftConflictError(PersistenceError):
    """The draft tier changed since the merge was computed; retry the merge."""

    expected_version: int | None = None
    current_version: int | None = None

    error_code: ClassVar[str] = ErrorCode.DRAFT_CONFLICT
    retryable: ClassVar[bool] = True

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["details"]["expected_version"] = self.expected_version
        result["details"]["current_version"] = self.current_version
        return result
