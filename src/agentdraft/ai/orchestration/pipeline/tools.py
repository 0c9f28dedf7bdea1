"""Pipeline stage: Tools.

This module provides the tools stage of the turn loop, responsible for
executing one turn's tool calls and collecting their results. Calls run
sequentially in artifact-first order so a later call can reference the id
produced by an earlier one in the same turn.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ...ai_types import ToolInvoker
from ..errors import ToolNotAllowedError
from ..placeholders import ArtifactLedger, partition_artifact_first, resolve_params
from ..types import ToolCall, ToolCallResult

__all__ = [
    "CREATION_TOOLS",
    "TurnToolResults",
    "execute_tool_call",
    "execute_turn_tools",
    "created_post_id_from",
]

LOGGER = logging.getLogger(__name__)

# Tools that create a brand-new post, with the result keys carrying its id.
CREATION_TOOLS: Mapping[str, tuple[str, ...]] = {
    "create_post_ai_review": ("postId", "translationId"),
    "create_translation_ai_review": ("postId", "translationId"),
}


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TurnToolResults:
    """Results from executing one turn's tool calls.

    Attributes:
        calls: Calls in execution order, with resolved parameters.
        results: One result per call, in execution order.
        created_post_id: Id from a successful content-creation call, if any.
        total_duration_ms: Total time for all tool executions.
    """

    calls: tuple[ToolCall, ...] = ()
    results: tuple[ToolCallResult, ...] = ()
    created_post_id: str | None = None
    total_duration_ms: float = 0.0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


async def execute_tool_call(
    call: ToolCall,
    invoker: ToolInvoker,
    *,
    agent_id: str,
    mode: str | None,
    allowed_tools: Sequence[str] = (),
) -> ToolCallResult:
    """Execute a single tool call; failures become error results, never exceptions."""

    start = time.perf_counter()
    if allowed_tools and call.name not in allowed_tools:
        error = ToolNotAllowedError.for_tool(call.name)
        LOGGER.warning("Rejected tool call for agent %s: %s", agent_id, error.message)
        return ToolCallResult.from_error(call, error.message)

    try:
        result = await invoker.call_tool(call.name, call.params, agent_id, mode)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000
        message = str(exc) or "Tool execution failed"
        LOGGER.warning("Tool %s failed after %.1fms: %s", call.name, duration_ms, message)
        return ToolCallResult.from_error(call, message, duration_ms)

    duration_ms = (time.perf_counter() - start) * 1000
    LOGGER.debug("Tool %s completed in %.1fms", call.name, duration_ms)
    return ToolCallResult.from_success(call, result, duration_ms)


async def execute_turn_tools(
    calls: Sequence[ToolCall],
    invoker: ToolInvoker,
    *,
    agent_id: str,
    mode: str | None,
    allowed_tools: Sequence[str] = (),
) -> TurnToolResults:
    """Execute one turn's calls sequentially, artifact-generating tools first.

    Before each call the parameters are scanned for placeholders referring to
    artifacts produced earlier in this turn. One failed call never stops its
    siblings.
    """

    start = time.perf_counter()
    executed: list[ToolCall] = []
    results: list[ToolCallResult] = []
    for call in partition_artifact_first(calls):
        if not call.name:
            LOGGER.debug("Skipping tool call without a name at index %s", call.index)
            continue
        if results:
            ledger = ArtifactLedger.from_turn(results)
            resolved = resolve_params(call.params, ledger)
            if resolved != call.params:
                LOGGER.debug("Resolved artifact placeholders in %s params", call.name)
                call = call.with_params(resolved)
        executed.append(call)
        results.append(
            await execute_tool_call(
                call,
                invoker,
                agent_id=agent_id,
                mode=mode,
                allowed_tools=allowed_tools,
            )
        )

    outcome = TurnToolResults(
        calls=tuple(executed),
        results=tuple(results),
        created_post_id=created_post_id_from(results),
        total_duration_ms=(time.perf_counter() - start) * 1000,
    )
    LOGGER.debug(
        "Executed %s tool call(s): %s succeeded, %s failed",
        len(outcome.results),
        outcome.success_count,
        outcome.error_count,
    )
    return outcome


def created_post_id_from(results: Sequence[ToolCallResult]) -> str | None:
    """Id of the first successful content-creation result, if any."""

    for result in results:
        keys = CREATION_TOOLS.get(result.tool)
        if not keys:
            continue
        value: Any = result.result_field(*keys)
        if value:
            return str(value)
    return None
