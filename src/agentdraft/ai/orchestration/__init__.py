"""Agent orchestration: response parsing, the turn loop and placeholder resolution.

The end-to-end entry point, :class:`~agentdraft.ai.orchestration.session.ExecutionSession`,
lives in :mod:`agentdraft.ai.orchestration.session`; it depends on the draft
layer, which in turn depends on the types exported here.
"""

from .errors import (
    AgentDraftError,
    ConfigurationError,
    DraftConflictError,
    ErrorCode,
    ExternalAgentError,
    ModuleTargetError,
    PersistenceError,
    ProviderError,
    ToolNotAllowedError,
)
from .types import (
    POST_FIELD_KEYS,
    LoopOutput,
    Message,
    ModuleUpdate,
    SuggestedContent,
    ToolCall,
    ToolCallResult,
    TranscriptEntry,
)
from .response_parser import ParsedResponse, extract_json, parse_response, try_parse_json_block
from .placeholders import (
    ArtifactLedger,
    GeneratedArtifact,
    PendingArtifact,
    partition_artifact_first,
    resolve_params,
    resolve_suggested_content,
)
from .message_builder import HISTORY_END_MARKER, HISTORY_START_MARKER, MessageBuilder
from .runner import DEFAULT_MAX_TURNS, LoopConfig, TurnLoopController

__all__ = [
    # Errors
    "AgentDraftError",
    "ConfigurationError",
    "DraftConflictError",
    "ErrorCode",
    "ExternalAgentError",
    "ModuleTargetError",
    "PersistenceError",
    "ProviderError",
    "ToolNotAllowedError",
    # Types
    "POST_FIELD_KEYS",
    "LoopOutput",
    "Message",
    "ModuleUpdate",
    "SuggestedContent",
    "ToolCall",
    "ToolCallResult",
    "TranscriptEntry",
    # Parsing
    "ParsedResponse",
    "extract_json",
    "parse_response",
    "try_parse_json_block",
    # Placeholders
    "ArtifactLedger",
    "GeneratedArtifact",
    "PendingArtifact",
    "partition_artifact_first",
    "resolve_params",
    "resolve_suggested_content",
    # Turn loop
    "HISTORY_END_MARKER",
    "HISTORY_START_MARKER",
    "MessageBuilder",
    "DEFAULT_MAX_TURNS",
    "LoopConfig",
    "TurnLoopController",
]
