"""Tests for completion response parsing."""

from __future__ import annotations

from agentdraft.ai.orchestration.response_parser import (
    extract_json,
    parse_response,
    try_parse_json_block,
)


class TestExtractJson:
    """Tests for pulling a JSON object out of model text."""

    def test_plain_object(self) -> None:
        assert extract_json('{"post": {"title": "X"}}') == {"post": {"title": "X"}}

    def test_fenced_block_with_language(self) -> None:
        text = 'Here you go:\n```json\n{"summary": "done"}\n```\nThanks!'
        assert extract_json(text) == {"summary": "done"}

    def test_fenced_block_without_language(self) -> None:
        text = '```\n{"summary": "done"}\n```'
        assert extract_json(text) == {"summary": "done"}

    def test_object_surrounded_by_prose(self) -> None:
        text = 'I updated the title. {"post": {"title": "New"}} Let me know.'
        assert extract_json(text) == {"post": {"title": "New"}}

    def test_trailing_braces_in_prose_fall_back_to_decoder(self) -> None:
        text = '{"summary": "ok"} and also {not json}'
        assert extract_json(text) == {"summary": "ok"}

    def test_non_json_returns_none(self) -> None:
        assert extract_json("Sorry, I cannot help with that.") is None

    def test_empty_and_none(self) -> None:
        assert extract_json("") is None
        assert extract_json(None) is None

    def test_array_is_not_an_object(self) -> None:
        assert try_parse_json_block("[1, 2, 3]") is None


class TestParseResponse:
    """Tests for the ParsedResponse boundary."""

    def test_tool_calls_are_read_in_order(self) -> None:
        parsed = parse_response(
            '{"tool_calls": [{"tool": "get_post", "params": {"id": 1}},'
            ' {"tool_name": "generate_image", "arguments": {"prompt": "cat"}}]}'
        )
        assert parsed is not None
        assert parsed.wants_tools
        assert [call.name for call in parsed.tool_calls] == ["get_post", "generate_image"]
        assert parsed.tool_calls[1].params == {"prompt": "cat"}
        assert parsed.tool_calls[1].index == 1

    def test_empty_tool_calls_array_is_terminal(self) -> None:
        parsed = parse_response('{"tool_calls": [], "summary": "All done"}')
        assert parsed is not None
        assert not parsed.wants_tools
        assert parsed.summary == "All done"

    def test_determination_falls_back_to_reasoning(self) -> None:
        parsed = parse_response('{"reasoning": "because", "post": {}}')
        assert parsed is not None
        assert parsed.determination == "because"

    def test_non_object_tool_call_entries_are_ignored(self) -> None:
        parsed = parse_response('{"tool_calls": ["get_post", {"tool": "list_post_types"}]}')
        assert parsed is not None
        assert [call.name for call in parsed.tool_calls] == ["list_post_types"]

    def test_non_json_is_none(self) -> None:
        assert parse_response("plain prose") is None
