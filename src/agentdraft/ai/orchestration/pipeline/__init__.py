"""Turn loop pipeline stages.

Tools
    Execute one turn's tool calls artifact-first, with intra-turn placeholder
    substitution and allow-list enforcement.

Finish
    Normalize the terminal completion into suggested content and a summary,
    and assemble execution metadata.
"""

from .finish import (
    INCOMPLETE_NOTE,
    FinalizedResponse,
    collect_metadata,
    finalize,
    natural_summary,
    normalize_payload,
)
from .tools import (
    CREATION_TOOLS,
    TurnToolResults,
    created_post_id_from,
    execute_tool_call,
    execute_turn_tools,
)

__all__ = [
    # Tools stage
    "CREATION_TOOLS",
    "TurnToolResults",
    "created_post_id_from",
    "execute_tool_call",
    "execute_turn_tools",
    # Finish stage
    "INCOMPLETE_NOTE",
    "FinalizedResponse",
    "collect_metadata",
    "finalize",
    "natural_summary",
    "normalize_payload",
]
