"""Agent definitions and the injected agent catalog."""

from .catalog import AgentCatalog
from .types import (
    AGENT_SCOPES,
    VIEW_MODES,
    AgentDefinition,
    AgentReaction,
    AgentScope,
    AgentScopeConfig,
    ExecutionContext,
    ExternalAgentConfig,
    LLMConfig,
    OpenEndedContextConfig,
    ReactionCondition,
    StyleGuide,
    ViewMode,
    WritingStyle,
)

__all__ = [
    "AGENT_SCOPES",
    "VIEW_MODES",
    "AgentCatalog",
    "AgentDefinition",
    "AgentReaction",
    "AgentScope",
    "AgentScopeConfig",
    "ExecutionContext",
    "ExternalAgentConfig",
    "LLMConfig",
    "OpenEndedContextConfig",
    "ReactionCondition",
    "StyleGuide",
    "ViewMode",
    "WritingStyle",
]
