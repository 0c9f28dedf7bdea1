"""Tests for orchestration/pipeline/tools.py."""

from __future__ import annotations

import pytest

from agentdraft.ai.orchestration.pipeline.tools import (
    created_post_id_from,
    execute_tool_call,
    execute_turn_tools,
)
from agentdraft.ai.orchestration.types import ToolCall, ToolCallResult

from tests.helpers import MockToolInvoker


# -----------------------------------------------------------------------------
# Single calls
# -----------------------------------------------------------------------------


class TestExecuteToolCall:
    """Tests for executing one tool call."""

    @pytest.mark.asyncio
    async def test_success_result(self) -> None:
        invoker = MockToolInvoker({"get_post_context": {"title": "Old"}})
        result = await execute_tool_call(
            ToolCall("get_post_context", {"postId": "p1"}),
            invoker,
            agent_id="writer",
            mode="ai-review",
        )
        assert result.success
        assert result.result == {"title": "Old"}
        assert invoker.calls == [("get_post_context", {"postId": "p1"}, "writer", "ai-review")]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self) -> None:
        invoker = MockToolInvoker({"generate_image": RuntimeError("quota exceeded")})
        result = await execute_tool_call(
            ToolCall("generate_image", {}), invoker, agent_id="writer", mode=None
        )
        assert not result.success
        assert result.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_disallowed_tool_is_rejected_without_invoking(self) -> None:
        invoker = MockToolInvoker()
        result = await execute_tool_call(
            ToolCall("delete_everything", {}),
            invoker,
            agent_id="writer",
            mode=None,
            allowed_tools=("get_post_context",),
        )
        assert not result.success
        assert result.error == "Tool 'delete_everything' is not in the allowed list"
        assert invoker.calls == []


# -----------------------------------------------------------------------------
# Whole turns
# -----------------------------------------------------------------------------


class TestExecuteTurnTools:
    """Tests for executing a turn's calls."""

    @pytest.mark.asyncio
    async def test_same_turn_placeholder_is_substituted_before_invocation(self) -> None:
        invoker = MockToolInvoker({"generate_image": {"mediaId": "m1"}})
        calls = [
            ToolCall("update_post_module_ai_review", {"overrides": {"image": "GENERATED_IMAGE_ID"}}, 0),
            ToolCall("generate_image", {"prompt": "cat"}, 1),
        ]
        outcome = await execute_turn_tools(calls, invoker, agent_id="writer", mode="ai-review")

        assert invoker.names == ["generate_image", "update_post_module_ai_review"]
        assert invoker.calls[1][1] == {"overrides": {"image": "m1"}}
        assert [call.name for call in outcome.calls] == ["generate_image", "update_post_module_ai_review"]
        assert outcome.success_count == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_siblings(self) -> None:
        invoker = MockToolInvoker(
            {"generate_image": ValueError("bad prompt"), "save_post_ai_review": {"ok": True}}
        )
        calls = [
            ToolCall("generate_image", {}, 0),
            ToolCall("save_post_ai_review", {"image": "GENERATED_IMAGE_ID"}, 1),
            ToolCall("not_allowed", {}, 2),
        ]
        outcome = await execute_turn_tools(
            calls,
            invoker,
            agent_id="writer",
            mode=None,
            allowed_tools=("generate_image", "save_post_ai_review"),
        )
        assert [result.success for result in outcome.results] == [False, True, False]
        assert outcome.error_count == 2
        # Failed generation leaves the placeholder for the tool to see.
        assert invoker.calls[1][1] == {"image": "GENERATED_IMAGE_ID"}

    @pytest.mark.asyncio
    async def test_positional_token_selects_the_matching_result(self) -> None:
        ids = iter(["m-a", "m-b"])
        invoker = MockToolInvoker({"generate_image": lambda params: {"mediaId": next(ids)}})
        calls = [
            ToolCall("generate_image", {}, 0),
            ToolCall("generate_image", {}, 1),
            ToolCall("update_module", {"first": "GENERATED_IMAGE_ID_0", "second": "GENERATED_IMAGE_ID_1"}, 2),
        ]
        await execute_turn_tools(calls, invoker, agent_id="writer", mode=None)
        assert invoker.calls[2][1] == {"first": "m-a", "second": "m-b"}

    @pytest.mark.asyncio
    async def test_created_post_id_is_reported(self) -> None:
        invoker = MockToolInvoker({"create_translation_ai_review": {"translationId": "p-fr"}})
        outcome = await execute_turn_tools(
            [ToolCall("create_translation_ai_review", {"language": "fr"})],
            invoker,
            agent_id="translator",
            mode="ai-review",
        )
        assert outcome.created_post_id == "p-fr"


class TestCreatedPostId:
    def test_failed_creation_is_ignored(self) -> None:
        results = [ToolCallResult.from_error(ToolCall("create_post_ai_review", {}), "denied")]
        assert created_post_id_from(results) is None

    def test_post_id_key(self) -> None:
        results = [ToolCallResult.from_success(ToolCall("create_post_ai_review", {}), {"postId": 7})]
        assert created_post_id_from(results) == "7"
