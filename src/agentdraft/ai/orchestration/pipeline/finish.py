"""Pipeline stage: Finish.

This module provides the finish stage of the turn loop, responsible for
turning the terminal completion into :class:`SuggestedContent` plus a summary,
and for assembling execution metadata.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..response_parser import try_parse_json_block
from ..types import POST_FIELD_KEYS, LoopOutput, SuggestedContent

__all__ = [
    "INCOMPLETE_NOTE",
    "FinalizedResponse",
    "finalize",
    "normalize_payload",
    "natural_summary",
    "collect_metadata",
]

LOGGER = logging.getLogger(__name__)

INCOMPLETE_NOTE = "(Note: Reached maximum execution turns. Some tasks may be incomplete.)"

_LEADING_PROSE_RE = re.compile(r"^([^{]+?)(?:\s*\{|\s*```)", re.DOTALL)
_MIN_PROSE_SUMMARY = 20
# Keys that mark an unwrapped ``content`` string as a suggestion envelope.
_ENVELOPE_KEYS = frozenset(("post", "modules", "summary", "redirectPostId", *POST_FIELD_KEYS))
# Loop bookkeeping that never belongs in suggested content.
_LOOP_KEYS = ("tool_calls", "toolResults")


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class FinalizedResponse:
    """Terminal suggestion extracted from the loop output.

    Attributes:
        suggestions: Validated suggestion payload.
        summary: Model or synthesized summary, with the incomplete note when capped.
        determination: Model reasoning (debug mode only).
        payload: Normalized open mapping the suggestions were built from.
    """

    suggestions: SuggestedContent
    summary: str | None = None
    determination: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------


def normalize_payload(parsed: Mapping[str, Any] | None, raw_text: str) -> dict[str, Any]:
    """Apply the wrapping fallbacks to a parsed terminal response.

    * Non-JSON text becomes ``{"content": raw_text}``.
    * A ``content`` string holding a JSON suggestion envelope is unwrapped one level.
    * Known post fields at the top level move under ``post`` when neither
      ``post`` nor ``modules`` is present.
    """
    if parsed is None:
        return {"content": raw_text}

    data = dict(parsed)
    for key in _LOOP_KEYS:
        data.pop(key, None)

    content = data.get("content")
    if isinstance(content, str):
        inner = try_parse_json_block(content.strip())
        if inner is not None and _ENVELOPE_KEYS.intersection(inner):
            LOGGER.debug("Unwrapping suggestion nested in a content string")
            data.pop("content")
            data = {**data, **inner}

    if "post" not in data and "modules" not in data:
        lifted = {key: data.pop(key) for key in POST_FIELD_KEYS if key in data}
        if lifted:
            data = {"post": lifted, **data}
    return data


def natural_summary(raw_text: str, payload: Mapping[str, Any]) -> str | None:
    """Prefer prose before the first JSON marker, else describe the change counts."""
    match = _LEADING_PROSE_RE.match(raw_text or "")
    if match and len(match.group(1).strip()) > _MIN_PROSE_SUMMARY:
        return match.group(1).strip()

    changes = []
    post = payload.get("post")
    if isinstance(post, Mapping) and post:
        changes.append(f"Updated {len(post)} post field(s)")
    modules = payload.get("modules")
    if isinstance(modules, list):
        changes.append(f"Updated {len(modules)} module(s)")
    if changes:
        return ". ".join(changes) + "."
    return None


def finalize(output: LoopOutput, *, debug: bool = False) -> FinalizedResponse:
    """Build the finalized response for a completed loop."""
    data = normalize_payload(output.parsed, output.raw_response)

    summary = data.pop("summary", None)
    if not isinstance(summary, str) or not summary.strip():
        summary = None
    determination = None
    if debug:
        for key in ("determination", "reasoning"):
            value = data.pop(key, None)
            if determination is None and isinstance(value, str) and value.strip():
                determination = value

    if summary is None:
        summary = natural_summary(output.raw_response, data)
    if output.incomplete:
        summary = f"{summary} {INCOMPLETE_NOTE}" if summary else INCOMPLETE_NOTE

    return FinalizedResponse(
        suggestions=SuggestedContent.from_payload(data),
        summary=summary,
        determination=determination,
        payload=data,
    )


# -----------------------------------------------------------------------------
# Metadata
# -----------------------------------------------------------------------------


def collect_metadata(
    output: LoopOutput,
    *,
    provider: str,
    model: str | None,
    duration_ms: float,
    debug_info: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble execution metadata for the session result."""
    metadata: dict[str, Any] = {
        "model": output.model or model,
        "provider": provider,
        "totalTurns": output.turns,
        "durationMs": round(duration_ms, 3),
        "usage": output.usage.to_dict(),
        "incomplete": output.incomplete,
    }
    if debug_info:
        metadata["debug"] = dict(debug_info)
    return metadata
