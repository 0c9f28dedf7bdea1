"""Tests for orchestration types and errors."""

from __future__ import annotations

from agentdraft.ai.orchestration.errors import (
    ConfigurationError,
    ExternalAgentError,
    ModuleTargetError,
    ProviderError,
    ToolNotAllowedError,
)
from agentdraft.ai.orchestration.types import (
    ModuleUpdate,
    SuggestedContent,
    ToolCall,
    ToolCallResult,
    TranscriptEntry,
)


class TestToolCall:
    def test_alternate_key_names(self) -> None:
        call = ToolCall.from_mapping({"tool_name": "search", "arguments": {"q": "x"}}, index=2)
        assert call == ToolCall("search", {"q": "x"}, 2)

    def test_non_mapping_params_become_empty(self) -> None:
        assert ToolCall.from_mapping({"tool": "search", "params": "oops"}).params == {}

    def test_result_serialization(self) -> None:
        call = ToolCall("search", {})
        assert ToolCallResult.from_success(call, [1]).to_dict() == {
            "tool": "search",
            "success": True,
            "result": [1],
        }
        assert ToolCallResult.from_error(call, "nope").to_dict() == {
            "tool": "search",
            "success": False,
            "error": "nope",
        }


class TestSuggestedContent:
    """Tests for validating model output into suggested content."""

    def test_from_payload(self) -> None:
        content = SuggestedContent.from_payload(
            {
                "post": {"title": "X"},
                "modules": [
                    {"type": "hero", "orderIndex": "1", "props": {"title": "T"}},
                    {"props": {"title": "untyped"}},
                    "junk",
                ],
                "redirectPostId": 42,
                "note": "kept",
            }
        )
        assert content.post == {"title": "X"}
        assert content.modules == (ModuleUpdate("hero", 1, props={"title": "T"}),)
        assert content.redirect_post_id == "42"
        assert content.extras == {"note": "kept"}
        assert content.has_changes

    def test_malformed_sections_are_dropped(self) -> None:
        content = SuggestedContent.from_payload({"post": "title", "modules": "hero"})
        assert content.post is None
        assert content.modules == ()
        assert not content.has_changes

    def test_without_changes_keeps_redirect(self) -> None:
        content = SuggestedContent(post={"title": "X"}, redirect_post_id="p2")
        stripped = content.without_changes()
        assert stripped.post is None
        assert stripped.redirect_post_id == "p2"
        assert content.without_changes("p3").redirect_post_id == "p3"

    def test_to_dict(self) -> None:
        content = SuggestedContent(modules=(ModuleUpdate("hero", overrides={"theme": "dark"}),))
        assert content.to_dict() == {"modules": [{"type": "hero", "overrides": {"theme": "dark"}}]}


def test_transcript_entry_omits_debug_fields() -> None:
    entry = TranscriptEntry(turn=1, summary="s")
    assert entry.to_dict() == {"turn": 1, "summary": "s", "toolCalls": [], "toolResults": []}


def test_error_serialization() -> None:
    assert ConfigurationError("bad", details={"agent_id": "a"}).to_dict() == {
        "type": "configuration_error",
        "message": "bad",
        "details": {"agent_id": "a"},
    }
    assert ToolNotAllowedError.for_tool("rm").message == "Tool 'rm' is not in the allowed list"
    error = ModuleTargetError("missing", module_type="hero", order_index=3)
    assert str(error) == "missing"
    assert error.to_dict()["type"] == "module_not_found"


def test_provider_and_webhook_errors() -> None:
    assert ProviderError("Empty response from provider").to_dict() == {
        "type": "provider_error",
        "message": "Empty response from provider",
    }
    error = ExternalAgentError("failed", details={"agent_id": "w"}, status_code=404)
    assert error.to_dict()["details"] == {"agent_id": "w", "status_code": 404}
    assert error.details == {"agent_id": "w"}
    assert "details" not in ExternalAgentError("timed out").to_dict()
