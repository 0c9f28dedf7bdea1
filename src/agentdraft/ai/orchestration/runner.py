"""Turn Loop Controller: drives the multi-turn completion/tool protocol.

Each turn is one completion. When the parsed completion carries a non-empty
``tool_calls`` array (and the agent may use tools) the calls are executed, the
assistant text and a synthesized results message are appended, and the model is
asked again. The loop stops on the first completion without tool calls or when
the turn cap is hit; the cap is the only bound on runaway execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..ai_types import (
    CompletionClient,
    CompletionOptions,
    CompletionResult,
    ProviderConfig,
    ToolInvoker,
)
from .errors import ConfigurationError
from .message_builder import MessageBuilder
from .pipeline.tools import execute_turn_tools
from .response_parser import ParsedResponse, parse_response
from .types import LoopOutput, Message, ToolCallResult, TranscriptEntry

__all__ = ["LoopConfig", "TurnLoopController", "DEFAULT_MAX_TURNS"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10
_NO_DETERMINATION = "No explicit reasoning provided in tool turn."


# -----------------------------------------------------------------------------
# Loop Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Per-session loop settings.

    Attributes:
        agent_id: Agent passed through to the tool invoker.
        max_turns: Hard cap on completions.
        use_tools: Whether tool calls are honored at all.
        allowed_tools: Tool allow-list; empty allows every tool.
        tool_mode: Draft tier tools should write to.
        debug: Capture raw output and reasoning in the transcript.
    """

    agent_id: str
    max_turns: int = DEFAULT_MAX_TURNS
    use_tools: bool = False
    allowed_tools: tuple[str, ...] = ()
    tool_mode: str | None = None
    debug: bool = False


# -----------------------------------------------------------------------------
# Turn Loop Controller
# -----------------------------------------------------------------------------


class TurnLoopController:
    """Runs the bounded completion/tool loop for one session.

    Example:
        >>> controller = TurnLoopController(client, invoker, builder)
        >>> output = await controller.run(messages, provider_config=cfg,
        ...                               options=opts, config=LoopConfig("seo"))
    """

    def __init__(
        self,
        client: CompletionClient,
        invoker: ToolInvoker | None,
        builder: MessageBuilder,
    ) -> None:
        self._client = client
        self._invoker = invoker
        self._builder = builder

    async def run(
        self,
        messages: Sequence[Message],
        *,
        provider_config: ProviderConfig,
        options: CompletionOptions,
        config: LoopConfig,
    ) -> LoopOutput:
        if config.use_tools and self._invoker is None:
            raise ConfigurationError(
                "Agent requires tools but no tool invoker is configured",
                details={"agent_id": config.agent_id},
            )

        history = list(messages)
        transcript: list[TranscriptEntry] = []
        all_results: list[ToolCallResult] = []
        created_post_id: str | None = None
        incomplete = False

        completion = await self._complete(history, options, provider_config)
        usage = completion.usage
        turns = 1
        parsed: ParsedResponse | None = parse_response(completion.content)

        while config.use_tools and parsed is not None and parsed.wants_tools:
            if turns >= config.max_turns:
                incomplete = True
                LOGGER.warning(
                    "Agent %s reached max turns (%s); result may be incomplete",
                    config.agent_id,
                    config.max_turns,
                )
                break

            LOGGER.debug(
                "Turn %s: executing %s tool call(s) for agent %s",
                turns,
                len(parsed.tool_calls),
                config.agent_id,
            )
            assert self._invoker is not None
            outcome = await execute_turn_tools(
                parsed.tool_calls,
                self._invoker,
                agent_id=config.agent_id,
                mode=config.tool_mode,
                allowed_tools=config.allowed_tools,
            )
            all_results.extend(outcome.results)
            if outcome.created_post_id:
                created_post_id = outcome.created_post_id
                LOGGER.debug("Turn %s created post %s", turns, created_post_id)

            transcript.append(
                TranscriptEntry(
                    turn=turns,
                    summary=parsed.summary,
                    tool_calls=outcome.calls,
                    tool_results=outcome.results,
                    determination=(parsed.determination or _NO_DETERMINATION) if config.debug else None,
                    raw_response=completion.content if config.debug else None,
                )
            )
            history.append(Message.assistant(completion.content))
            history.append(
                Message.user(
                    self._builder.build_tool_followup(turns, outcome.results, outcome.created_post_id)
                )
            )

            completion = await self._complete(history, options, provider_config)
            usage = usage + completion.usage
            turns += 1
            parsed = parse_response(completion.content)

        return LoopOutput(
            raw_response=completion.content,
            parsed=parsed.data if parsed is not None else None,
            transcript=tuple(transcript),
            tool_results=tuple(all_results),
            created_post_id=created_post_id,
            turns=turns,
            incomplete=incomplete,
            usage=usage,
            model=completion.metadata.get("model"),
        )

    async def _complete(
        self,
        history: Sequence[Message],
        options: CompletionOptions,
        provider_config: ProviderConfig,
    ) -> CompletionResult:
        payload = [message.to_chat_param() for message in history]
        result = await self._client.complete(payload, options, provider_config)
        LOGGER.debug(
            "Completion returned %s chars (%s tokens)",
            len(result.content or ""),
            result.usage.total_tokens,
        )
        return result
