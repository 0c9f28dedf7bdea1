"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Sequence

import httpx

from agentdraft.ai.agents.types import AgentDefinition
from agentdraft.ai.ai_types import CompletionOptions, CompletionResult, CompletionUsage, ProviderConfig
from agentdraft.drafts.store import ModuleRecord, PostRecord


class MockCompletionClient:
    """Scripted completion client.

    Returns ``responses`` in order, then ``default`` for every further call.
    Every call is recorded in ``calls`` as ``(messages, options, provider_config)``.

    Example:
        client = MockCompletionClient(['{"post": {"title": "X"}}'])
    """

    def __init__(
        self,
        responses: Sequence[str | Mapping[str, Any]] = (),
        *,
        default: str | Mapping[str, Any] | None = None,
        model: str = "test-model",
    ) -> None:
        self.responses = [_as_text(item) for item in responses]
        self.default = _as_text(default) if default is not None else "{}"
        self.model = model
        self.calls: list[tuple[list[dict[str, Any]], CompletionOptions, ProviderConfig]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(
        self,
        messages: Sequence[Mapping[str, Any]],
        options: CompletionOptions,
        provider_config: ProviderConfig,
    ) -> CompletionResult:
        index = len(self.calls)
        self.calls.append(([dict(m) for m in messages], options, provider_config))
        content = self.responses[index] if index < len(self.responses) else self.default
        return CompletionResult(
            content=content,
            usage=CompletionUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            metadata={"model": self.model, "provider": provider_config.provider},
        )


class MockToolInvoker:
    """Scripted tool invoker.

    ``results`` maps a tool name to a value, an exception instance (raised), or
    a callable receiving the params. Unknown tools return ``{"ok": True}``.
    """

    def __init__(self, results: Mapping[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[tuple[str, dict[str, Any], str, str | None]] = []

    @property
    def names(self) -> list[str]:
        return [name for name, _, _, _ in self.calls]

    async def call_tool(
        self,
        name: str,
        params: Mapping[str, Any],
        agent_id: str,
        mode: str | None = None,
    ) -> Any:
        self.calls.append((name, dict(params), agent_id, mode))
        outcome = self.results.get(name, {"ok": True})
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return _call(outcome, params)
        return outcome


class RecordingHandler:
    """httpx ``MockTransport`` handler replaying scripted responses.

    Each entry of ``responses`` is an :class:`httpx.Response` or an exception to
    raise; ``default`` answers every further request. Requests land in ``requests``.
    """

    def __init__(self, responses: Sequence[Any] = (), *, default: httpx.Response | None = None) -> None:
        self.responses = list(responses)
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else self.default
        if outcome is None:
            outcome = httpx.Response(200, json={})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def json_bodies(self) -> list[Any]:
        return [json.loads(request.content) for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _call(func: Callable[[Mapping[str, Any]], Any], params: Mapping[str, Any]) -> Any:
    return func(params)


def _as_text(item: str | Mapping[str, Any]) -> str:
    return item if isinstance(item, str) else json.dumps(item)


def tool_turn(*calls: tuple[str, Mapping[str, Any]], **extra: Any) -> str:
    """Completion text requesting ``calls``."""
    payload = {"tool_calls": [{"tool": name, "params": dict(params)} for name, params in calls]}
    payload.update(extra)
    return json.dumps(payload)


def make_agent(**overrides: Any) -> AgentDefinition:
    data: dict[str, Any] = {
        "id": "writer",
        "name": "Writer",
        "scopes": {"dropdown": True, "global": True, "field": True},
        "system_prompt": "Improve the post.",
        "llm": {"provider": "openai", "model": "gpt-test", "api_key": "sk-test-secret"},
    }
    data.update(overrides)
    return AgentDefinition.from_mapping(data)


def make_post(post_id: str = "post-1", **fields: Any) -> PostRecord:
    return PostRecord(
        id=post_id,
        fields=fields or {"title": "Old", "excerpt": "Short", "slug": "old"},
        modules=[
            ModuleRecord("pm-0", "mi-0", "hero", 0, props={"title": "Hero 0", "cta": {"label": "Go", "href": "/a"}}),
            ModuleRecord("pm-1", "mi-1", "hero", 1, props={"title": "Hero 1", "cta": {"label": "Go", "href": "/b"}}),
            ModuleRecord("pm-2", "mi-2", "prose", 2, props={"content": "Body"}),
            ModuleRecord("pm-3", "mi-3", "hero", 3, props={"title": "Hero 3", "cta": {"label": "Go", "href": "/c"}}),
            ModuleRecord("pm-4", "mi-g", "footer", 4, scope="global", props={"text": "Shared"}),
        ],
    )
