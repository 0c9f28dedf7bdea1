"""Response parsing for model completions.

Models are asked to answer with a single JSON object but routinely wrap it in
Markdown fences or surround it with prose. The helpers here pull the object out
and never raise: a ``None`` result means "not JSON" and is a control-flow signal
for the turn loop, not an error.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .types import ToolCall

__all__ = [
    "FENCED_JSON_RE",
    "BARE_JSON_RE",
    "ParsedResponse",
    "extract_json",
    "parse_response",
    "try_parse_json_block",
]

LOGGER = logging.getLogger(__name__)

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", re.IGNORECASE)
BARE_JSON_RE = re.compile(r"(\{[\s\S]*\})")


@dataclass(slots=True, frozen=True)
class ParsedResponse:
    """A completion that yielded a JSON object.

    Attributes:
        data: The parsed object.
        tool_calls: Calls from a ``tool_calls`` array, in model order.
        summary: ``summary`` string, if present.
        determination: ``determination`` (or ``reasoning``) string, if present.
    """

    data: Mapping[str, Any]
    tool_calls: tuple[ToolCall, ...] = field(default=())
    summary: str | None = None
    determination: str | None = None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


def try_parse_json_block(text: str) -> dict[str, Any] | None:
    """Attempt to parse text as a JSON object, returning None on failure."""
    if not text:
        return None
    try:
        result = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return result if isinstance(result, dict) else None


def extract_json(text: str | None) -> dict[str, Any] | None:
    """Extract the JSON object embedded in ``text``.

    A fenced block (```json or bare ```) wins; otherwise the widest ``{...}``
    span in the raw text is tried.
    """
    if not text or not isinstance(text, str):
        return None
    for pattern in (FENCED_JSON_RE, BARE_JSON_RE):
        match = pattern.search(text)
        if match is None:
            continue
        parsed = try_parse_json_block(match.group(1))
        if parsed is not None:
            return parsed
    # Trailing prose containing braces defeats the greedy span; decode from the first brace.
    start = text.find("{")
    if start == -1:
        return None
    try:
        result, _ = json.JSONDecoder().raw_decode(text[start:])
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def parse_response(text: str | None) -> ParsedResponse | None:
    """Parse a completion into a :class:`ParsedResponse`, or ``None`` if not JSON."""
    data = extract_json(text)
    if data is None:
        LOGGER.debug("Completion did not contain a JSON object")
        return None
    return ParsedResponse(
        data=data,
        tool_calls=_tool_calls_from(data.get("tool_calls")),
        summary=_as_text(data.get("summary")),
        determination=_as_text(data.get("determination")) or _as_text(data.get("reasoning")),
    )


def _tool_calls_from(value: Any) -> tuple[ToolCall, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return ()
    calls = []
    for index, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            LOGGER.debug("Ignoring non-object tool call entry at index %s", index)
            continue
        calls.append(ToolCall.from_mapping(entry, index=index))
    return tuple(calls)


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
