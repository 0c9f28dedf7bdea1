"""Tests for orchestration/pipeline/finish.py."""

from __future__ import annotations

from agentdraft.ai.ai_types import CompletionUsage
from agentdraft.ai.orchestration.pipeline.finish import (
    INCOMPLETE_NOTE,
    collect_metadata,
    finalize,
    natural_summary,
    normalize_payload,
)
from agentdraft.ai.orchestration.types import LoopOutput


class TestNormalizePayload:
    """Tests for the wrapping fallbacks."""

    def test_non_json_becomes_content(self) -> None:
        assert normalize_payload(None, "Just prose") == {"content": "Just prose"}

    def test_loop_bookkeeping_is_dropped(self) -> None:
        data = normalize_payload({"tool_calls": [], "toolResults": [], "post": {"title": "X"}}, "")
        assert data == {"post": {"title": "X"}}

    def test_content_string_with_envelope_is_unwrapped(self) -> None:
        parsed = {"content": '{"post": {"title": "X"}, "summary": "s"}'}
        assert normalize_payload(parsed, "") == {"post": {"title": "X"}, "summary": "s"}

    def test_literal_content_field_is_kept(self) -> None:
        parsed = {"content": '{"body": "hello"}'}
        assert normalize_payload(parsed, "") == {"content": '{"body": "hello"}'}

    def test_bare_post_fields_are_lifted(self) -> None:
        parsed = {"title": "X", "excerpt": "E", "summary": "s"}
        assert normalize_payload(parsed, "") == {"post": {"title": "X", "excerpt": "E"}, "summary": "s"}

    def test_no_lifting_when_modules_present(self) -> None:
        parsed = {"title": "X", "modules": []}
        assert normalize_payload(parsed, "") == {"title": "X", "modules": []}


class TestSummaries:
    """Tests for summary fallback."""

    def test_prose_before_json_is_used(self) -> None:
        raw = 'I rewrote the hero headline for clarity. {"modules": []}'
        assert natural_summary(raw, {}) == "I rewrote the hero headline for clarity."

    def test_short_prose_falls_back_to_counts(self) -> None:
        raw = 'Done. {"post": {"title": "X"}}'
        payload = {"post": {"title": "X", "slug": "x"}, "modules": [{"type": "hero"}]}
        assert natural_summary(raw, payload) == "Updated 2 post field(s). Updated 1 module(s)."

    def test_finalize_pops_summary(self) -> None:
        output = LoopOutput(raw_response="{}", parsed={"summary": "All good", "post": {"title": "X"}})
        finalized = finalize(output)
        assert finalized.summary == "All good"
        assert "summary" not in finalized.payload
        assert finalized.suggestions.post == {"title": "X"}

    def test_finalize_appends_incomplete_note(self) -> None:
        output = LoopOutput(raw_response="{}", parsed={"summary": "Partial"}, incomplete=True)
        assert finalize(output).summary == f"Partial {INCOMPLETE_NOTE}"

    def test_determination_only_in_debug(self) -> None:
        parsed = {"determination": "why", "post": {"title": "X"}}
        output = LoopOutput(raw_response="{}", parsed=parsed)
        assert finalize(output).determination is None
        debug = finalize(output, debug=True)
        assert debug.determination == "why"
        assert "determination" not in debug.payload


class TestMetadata:
    def test_collect_metadata(self) -> None:
        output = LoopOutput(
            raw_response="{}",
            turns=3,
            usage=CompletionUsage(prompt_tokens=20, completion_tokens=10, total_tokens=30),
            model="gpt-reported",
        )
        metadata = collect_metadata(output, provider="openai", model="gpt-test", duration_ms=12.3456)
        assert metadata == {
            "model": "gpt-reported",
            "provider": "openai",
            "totalTurns": 3,
            "durationMs": 12.346,
            "usage": {"prompt_tokens": 20, "completion_tokens": 10, "total_tokens": 30},
            "incomplete": False,
        }
