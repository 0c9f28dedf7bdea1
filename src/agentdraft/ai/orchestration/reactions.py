"""Agent reactions: follow-up actions fired after an execution finishes.

Reactions are independent of one another and of the execution result. They run
concurrently, a failing reaction is logged and never affects the session
result or the other reactions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..agents.types import AgentReaction, ExecutionContext, ReactionCondition
from ..ai_types import ToolInvoker
from .message_builder import interpolate_template

__all__ = ["ReactionOutcome", "ReactionExecutor", "should_trigger", "evaluate_condition"]

LOGGER = logging.getLogger(__name__)
_MISSING = object()


@dataclass(slots=True, frozen=True)
class ReactionOutcome:
    """What reactions see of an execution: success flag, suggestion data, error message."""

    success: bool
    data: Mapping[str, Any] | None = None
    error: str | None = None

    def as_mapping(self) -> dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error}


def _lookup(source: Any, path: str) -> Any:
    value = source
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(condition: ReactionCondition, outcome: ReactionOutcome) -> bool:
    value = _lookup(outcome.as_mapping(), condition.field) if condition.field else _MISSING
    operator = condition.operator
    if operator == "exists":
        return value is not _MISSING and value is not None
    if value is _MISSING:
        value = None
    if operator == "equals":
        return value == condition.value
    if operator == "contains":
        return str(condition.value or "") in str(value or "")
    if operator in ("greater_than", "less_than"):
        left, right = _as_number(value), _as_number(condition.value)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    if operator == "matches":
        try:
            return re.search(str(condition.value or ""), str(value or "")) is not None
        except re.error:
            LOGGER.warning("Invalid reaction condition pattern: %r", condition.value)
            return False
    return False


def should_trigger(reaction: AgentReaction, outcome: ReactionOutcome) -> bool:
    trigger = reaction.trigger
    if trigger == "always":
        return True
    if trigger == "on_success":
        return outcome.success
    if trigger == "on_error":
        return not outcome.success
    if trigger == "on_condition":
        return reaction.condition is not None and evaluate_condition(reaction.condition, outcome)
    return False


class ReactionExecutor:
    """Runs an agent's reactions.

    Args:
        http_client: Client used by webhook and Slack reactions; created lazily.
        invoker: Tool sandbox used by ``mcp_tool`` reactions.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, *, invoker: ToolInvoker | None = None) -> None:
        self._http = http_client
        self._owns_client = http_client is None
        self._invoker = invoker

    async def run(self, context: ExecutionContext, outcome: ReactionOutcome) -> None:
        reactions = [
            reaction
            for reaction in context.agent.reactions
            if reaction.enabled and should_trigger(reaction, outcome)
        ]
        if not reactions:
            return
        results = await asyncio.gather(
            *(self._execute(reaction, context, outcome) for reaction in reactions),
            return_exceptions=True,
        )
        for reaction, result in zip(reactions, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                LOGGER.warning(
                    "Reaction %s of agent %s failed: %s",
                    reaction.type,
                    context.agent.id,
                    result,
                )

    async def aclose(self) -> None:
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Reaction types
    # ------------------------------------------------------------------
    async def _execute(self, reaction: AgentReaction, context: ExecutionContext, outcome: ReactionOutcome) -> None:
        if reaction.type == "webhook":
            await self._webhook(reaction, context, outcome)
        elif reaction.type == "slack":
            await self._slack(reaction, context, outcome)
        elif reaction.type == "mcp_tool":
            await self._tool(reaction, context, outcome)
        else:
            LOGGER.warning("Reaction type %r is not supported; skipping", reaction.type)

    async def _webhook(self, reaction: AgentReaction, context: ExecutionContext, outcome: ReactionOutcome) -> None:
        config = reaction.config
        url = config.get("url")
        if not url:
            raise ValueError("Webhook URL is required")
        body: Any = outcome.data
        template = config.get("bodyTemplate")
        if template:
            rendered = interpolate_template(str(template), self._variables(context, outcome))
            try:
                body = json.loads(rendered)
            except json.JSONDecodeError:
                body = rendered
        response = await self._client().request(
            str(config.get("method") or "POST").upper(),
            str(url),
            json=body,
            headers={"Content-Type": "application/json", **dict(config.get("headers") or {})},
        )
        response.raise_for_status()

    async def _slack(self, reaction: AgentReaction, context: ExecutionContext, outcome: ReactionOutcome) -> None:
        config = reaction.config
        url = config.get("webhookUrl")
        if not url:
            raise ValueError("Slack webhook URL is required")
        template = config.get("template")
        if template:
            text = interpolate_template(str(template), self._variables(context, outcome))
        else:
            status = "completed successfully" if outcome.success else "failed"
            text = f"Agent {context.agent.name} {status}"
        payload: dict[str, Any] = {"text": text}
        if config.get("channel"):
            payload["channel"] = config["channel"]
        response = await self._client().post(str(url), json=payload)
        response.raise_for_status()

    async def _tool(self, reaction: AgentReaction, context: ExecutionContext, outcome: ReactionOutcome) -> None:
        name = reaction.config.get("toolName")
        if not name:
            raise ValueError("MCP tool name is required")
        if self._invoker is None:
            LOGGER.warning("No tool invoker configured; skipping reaction tool %s", name)
            return
        raw = reaction.config.get("toolParams")
        if isinstance(raw, str):
            rendered = interpolate_template(raw, {**outcome.as_mapping(), **context.data})
            try:
                params = json.loads(rendered)
            except json.JSONDecodeError as exc:
                raise ValueError("Invalid toolParams template") from exc
        else:
            params = dict(raw or {})
        await self._invoker.call_tool(str(name), params, context.agent.id)

    @staticmethod
    def _variables(context: ExecutionContext, outcome: ReactionOutcome) -> dict[str, Any]:
        return {
            "agent": context.agent.name,
            "agentId": context.agent.id,
            "scope": context.scope,
            "result": outcome.data,
            "error": outcome.error,
            "success": outcome.success,
            **context.data,
        }

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http
