"""Execution Session: one agent invocation, end to end.

The session validates the request, resolves provider configuration, builds the
prompt, drives the :class:`TurnLoopController`, finalizes the terminal
response into suggested content and merges it into the target draft tier.
Webhook (``external``) agents skip the loop: their JSON answer is finalized the
same way. Fatal errors come back as a failed :class:`SessionResult` rather than raised.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ...drafts.merge import DraftMergeEngine, select_target_tier
from ...drafts.schema import ModuleRegistry
from ...drafts.store import DraftStore, PostRecord
from ...drafts.targeting import (
    MEDIA_FIELD_TYPES,
    FieldTarget,
    inject_field_target,
    place_field_media,
    resolve_field_target,
)
from ...services.settings import Settings, redact_mapping
from ..agents.catalog import AgentCatalog
from ..agents.types import AgentDefinition, ExecutionContext
from ..ai_types import CompletionClient, CompletionOptions, ProviderConfig, ToolDescriptor, ToolInvoker
from ..client import AIClient
from .errors import AgentDraftError, ConfigurationError, PersistenceError
from .external import ExternalAgentClient
from .message_builder import MessageBuilder, target_mode_for
from .pipeline.finish import FinalizedResponse, collect_metadata, finalize
from .placeholders import ArtifactLedger, resolve_suggested_content
from .reactions import ReactionExecutor, ReactionOutcome
from .response_parser import extract_json
from .runner import LoopConfig, TurnLoopController
from .types import LoopOutput, Message, SuggestedContent, TranscriptEntry

__all__ = ["SessionResult", "ExecutionSession", "resolve_provider_config", "api_key_env_var"]

LOGGER = logging.getLogger(__name__)


def api_key_env_var(provider: str) -> str:
    """Environment variable holding the API key of ``provider``."""
    return f"AI_PROVIDER_{provider.upper().replace('-', '_')}_API_KEY"


def resolve_provider_config(
    agent: AgentDefinition,
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Resolve the provider, model, key and endpoint an agent runs against.

    Agent values win; provider/model fall back to the settings defaults and the
    key to ``AI_PROVIDER_<PROVIDER>_API_KEY``. Raises
    :class:`ConfigurationError` when anything required is missing.
    """
    if agent.llm is None:
        raise ConfigurationError(
            f"Agent {agent.id} has no LLM configuration", details={"agent_id": agent.id}
        )
    env = os.environ if environ is None else environ
    llm = agent.llm
    provider = (llm.provider or settings.default_provider or "").strip().lower()
    model = (llm.model or settings.default_model or "").strip()
    api_key = llm.api_key or (env.get(api_key_env_var(provider)) if provider else None)
    config = ProviderConfig(
        provider=provider,
        model=model,
        api_key=api_key or "",
        base_url=llm.base_url or settings.base_url,
    )
    AIClient.validate_config(config)
    return config


# -----------------------------------------------------------------------------
# Result
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class SessionResult:
    """Outcome of one execution session.

    Attributes:
        success: Whether the session completed.
        suggestions: Suggested content after placeholder resolution and redirect safety.
        raw_response: Terminal completion text.
        summary: Model or synthesized summary.
        transcript: One entry per tool-executing turn.
        created_post_id: Post created by a content-creation tool, if any.
        redirect_post_id: Post the caller should navigate to instead of the edited one.
        tier: Draft tier the suggestions were merged into.
        version: Version stamp of the tier after the write.
        applied: Targets that actually changed.
        skipped: Module updates that matched no instance.
        determination: Model reasoning (debug mode only).
        metadata: Model, provider, turns, usage and duration.
        error: ``{"type", "message", "details"}`` on failure.
    """

    success: bool
    suggestions: SuggestedContent | None = None
    raw_response: str | None = None
    summary: str | None = None
    transcript: tuple[TranscriptEntry, ...] = ()
    created_post_id: str | None = None
    redirect_post_id: str | None = None
    tier: str | None = None
    version: int | None = None
    applied: tuple[str, ...] = ()
    skipped: tuple[Mapping[str, Any], ...] = ()
    determination: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    error: Mapping[str, Any] | None = None

    @classmethod
    def failure(cls, error: AgentDraftError, **kwargs: Any) -> SessionResult:
        return cls(success=False, error=error.to_dict(), **kwargs)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": dict(self.error or {}), "metadata": dict(self.metadata)}
        payload: dict[str, Any] = {
            "success": True,
            "suggestions": self.suggestions.to_dict() if self.suggestions else {},
            "rawResponse": self.raw_response,
            "summary": self.summary,
            "transcript": [entry.to_dict() for entry in self.transcript],
            "applied": list(self.applied),
            "metadata": dict(self.metadata),
        }
        if self.skipped:
            payload["skipped"] = [dict(item) for item in self.skipped]
        if self.tier is not None:
            payload["tier"] = self.tier
        if self.created_post_id is not None:
            payload["createdPostId"] = self.created_post_id
        if self.redirect_post_id is not None:
            payload["redirectPostId"] = self.redirect_post_id
        if self.determination is not None:
            payload["determination"] = self.determination
        return payload


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class ExecutionSession:
    """Orchestrates agent executions against injected collaborators.

    Args:
        client: Completion client (usually :class:`~agentdraft.ai.client.AIClient`).
        catalog: Agents this session may run.
        store: Draft persistence; ``None`` returns suggestions without applying them.
        invoker: Tool sandbox for agents with tool use enabled.
        registry: Module schemas for rich-text/reference normalization.
        tools: Tool descriptors advertised to agents.
        settings: Engine settings.
        environ: Environment used to look up provider API keys.
        external_client: Webhook client for ``external`` agents.
        reaction_executor: Runs agent reactions after each execution.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        catalog: AgentCatalog,
        store: DraftStore | None = None,
        invoker: ToolInvoker | None = None,
        registry: ModuleRegistry | None = None,
        tools: Sequence[ToolDescriptor] = (),
        settings: Settings | None = None,
        environ: Mapping[str, str] | None = None,
        external_client: ExternalAgentClient | None = None,
        reaction_executor: ReactionExecutor | None = None,
    ) -> None:
        self._client = client
        self._catalog = catalog
        self._store = store
        self._invoker = invoker
        self._engine = DraftMergeEngine(registry)
        self._tools = tuple(tools)
        self._settings = settings or Settings()
        self._environ = environ
        self._external = external_client or ExternalAgentClient(development=self._settings.development)
        self._reactions = reaction_executor or ReactionExecutor(invoker=invoker)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> DraftStore | None:
        return self._store

    async def execute_agent(
        self,
        agent_id: str,
        scope: str,
        payload: Mapping[str, Any] | None = None,
        *,
        user_id: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> SessionResult:
        """Look ``agent_id`` up in the catalog and :meth:`execute` it."""
        try:
            agent = self._catalog.require(agent_id)
        except ConfigurationError as exc:
            LOGGER.warning("Cannot execute agent: %s", exc.message)
            return SessionResult.failure(exc)
        execution_context = ExecutionContext(
            agent=agent,
            scope=scope,  # type: ignore[arg-type]
            user_id=user_id,
            data=dict(context or {}),
        )
        return await self.execute(execution_context, payload or {})

    async def execute(self, context: ExecutionContext, payload: Mapping[str, Any]) -> SessionResult:
        """Run one agent invocation; never raises for execution failures.

        The agent's reactions run once the result is known, whatever it is.
        """
        result = await self._execute(context, payload)
        if context.agent.reactions:
            await self._reactions.run(context, self._reaction_outcome(result))
        return result

    async def aclose(self) -> None:
        """Close the HTTP clients of the webhook and reaction helpers."""

        await self._external.aclose()
        await self._reactions.aclose()

    async def _execute(self, context: ExecutionContext, payload: Mapping[str, Any]) -> SessionResult:
        agent = context.agent
        started = time.perf_counter()
        debug = self._settings.debug
        messages: Sequence[Message] = ()
        try:
            self._check_availability(context)
            provider_config = self._resolve_runtime(agent)
            request = await self._prepare_payload(context, payload)

            if provider_config is None:
                output = await self._call_external(agent, request)
            else:
                builder = MessageBuilder(self._tools, debug=debug)
                messages = builder.build_messages(agent, context, request)
                output = await self._run_loop(context, builder, messages, provider_config)
            finalized = finalize(output, debug=debug)

            tier = select_target_tier(context.scope, context.view_mode, agent_type=agent.type)
            post, base_version = await self._load_target(context, tier)
            suggestions = self._shape_suggestions(context, finalized, output, post)
            suggestions, redirect_post_id = self._apply_redirect_safety(context, suggestions, output)

            applied: tuple[str, ...] = ()
            skipped: tuple[Mapping[str, Any], ...] = ()
            version: int | None = None
            if suggestions.has_changes and self._store is not None:
                if post is None:
                    if context.post_id is not None:
                        raise PersistenceError(
                            f"Post {context.post_id} not found",
                            entity="posts",
                            entity_id=context.post_id,
                        )
                    LOGGER.debug("No target post; returning suggestions without applying them")
                else:
                    plan = self._engine.plan(post, suggestions, tier=tier, base_version=base_version)
                    applied, skipped = plan.applied, plan.skipped
                    if not plan.is_empty:
                        version = await self._store.apply(plan, user_id=context.user_id)
        except AgentDraftError as exc:
            LOGGER.warning("Agent %s failed: %s", agent.id, exc.message)
            return SessionResult.failure(exc, metadata=self._failure_metadata(started))
        except Exception as exc:
            LOGGER.exception("Agent %s execution failed", agent.id)
            error = AgentDraftError(message=str(exc) or type(exc).__name__)
            return SessionResult.failure(error, metadata=self._failure_metadata(started))

        duration_ms = (time.perf_counter() - started) * 1000
        metadata = collect_metadata(
            output,
            provider=provider_config.provider if provider_config else "external",
            model=provider_config.model if provider_config else None,
            duration_ms=duration_ms,
            debug_info=self._debug_info(agent, messages, request) if debug and provider_config else None,
        )
        LOGGER.info(
            "Agent %s finished in %s turn(s): %s target(s) applied",
            agent.id,
            output.turns,
            len(applied),
        )
        return SessionResult(
            success=True,
            suggestions=suggestions,
            raw_response=output.raw_response,
            summary=finalized.summary,
            transcript=output.transcript,
            created_post_id=output.created_post_id,
            redirect_post_id=redirect_post_id,
            tier=tier if version is not None else None,
            version=version,
            applied=applied,
            skipped=skipped,
            determination=finalized.determination,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Agent runtimes
    # ------------------------------------------------------------------
    def _resolve_runtime(self, agent: AgentDefinition) -> ProviderConfig | None:
        """Provider config for ``internal`` agents, ``None`` for webhook agents."""
        if agent.type == "internal":
            return resolve_provider_config(agent, self._settings, self._environ)
        if agent.type == "external":
            return None
        raise ConfigurationError(
            f"Unsupported agent type: {agent.type}",
            details={"agent_id": agent.id, "type": agent.type},
        )

    async def _run_loop(
        self,
        context: ExecutionContext,
        builder: MessageBuilder,
        messages: Sequence[Message],
        provider_config: ProviderConfig,
    ) -> LoopOutput:
        agent = context.agent
        assert agent.llm is not None
        controller = TurnLoopController(self._client, self._invoker, builder)
        return await controller.run(
            messages,
            provider_config=provider_config,
            options=self._completion_options(agent),
            config=LoopConfig(
                agent_id=agent.id,
                max_turns=self._settings.max_turns,
                use_tools=agent.use_tools,
                allowed_tools=agent.llm.allowed_tools,
                tool_mode=target_mode_for(context),
                debug=self._settings.debug,
            ),
        )

    async def _call_external(self, agent: AgentDefinition, request: Mapping[str, Any]) -> LoopOutput:
        text = await self._external.call(agent, request)
        return LoopOutput(raw_response=text, parsed=extract_json(text))

    @staticmethod
    def _reaction_outcome(result: SessionResult) -> ReactionOutcome:
        if result.success:
            data = result.suggestions.to_dict() if result.suggestions else {}
            return ReactionOutcome(success=True, data=data)
        return ReactionOutcome(success=False, error=(result.error or {}).get("message"))

    # ------------------------------------------------------------------
    # Validation and request preparation
    # ------------------------------------------------------------------
    def _check_availability(self, context: ExecutionContext) -> None:
        agent = context.agent
        catalog = self._catalog if agent.id in self._catalog else AgentCatalog([agent])
        if not catalog.is_available_in_scope(agent.id, context.scope, context.field_key, context.field_type):
            raise ConfigurationError(
                f"Agent {agent.id} is not available in scope '{context.scope}'",
                details={"agent_id": agent.id, "scope": context.scope},
            )

    async def _prepare_payload(self, context: ExecutionContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        request = dict(payload)
        instruction = request.pop("openEndedContext", None)
        if isinstance(instruction, str) and instruction.strip():
            request["openEndedContext"] = self._validate_instruction(context.agent, instruction)

        if context.scope != "global" and "post" not in request and context.post_id and self._store is not None:
            post = await self._store.get_post(context.post_id)
            if post is not None:
                request.update(post.to_payload())
        return request

    @staticmethod
    def _validate_instruction(agent: AgentDefinition, instruction: str) -> str:
        text = instruction.strip()
        config = agent.open_ended
        if not config.enabled:
            raise ConfigurationError(
                f"Agent {agent.id} does not accept open-ended instructions",
                details={"agent_id": agent.id},
            )
        if config.max_chars is not None and len(text) > config.max_chars:
            raise ConfigurationError(
                f"Instruction exceeds the maximum length of {config.max_chars} characters",
                details={"agent_id": agent.id, "length": len(text), "max_chars": config.max_chars},
            )
        return text

    def _completion_options(self, agent: AgentDefinition) -> CompletionOptions:
        assert agent.llm is not None
        temperature = agent.llm.temperature
        return CompletionOptions(
            temperature=self._settings.default_temperature if temperature is None else temperature,
            max_tokens=agent.llm.max_tokens,
        )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    async def _load_target(self, context: ExecutionContext, tier: str) -> tuple[PostRecord | None, int]:
        if self._store is None or context.post_id is None:
            return None, 0
        # Version first: a write landing in between fails the version check.
        version = await self._store.get_version(context.post_id, tier)
        post = await self._store.get_post(context.post_id)
        return post, version

    def _shape_suggestions(
        self,
        context: ExecutionContext,
        finalized: FinalizedResponse,
        output: LoopOutput,
        post: PostRecord | None,
    ) -> SuggestedContent:
        data: dict[str, Any] = dict(finalized.payload)
        target: FieldTarget | None = None
        if context.scope == "field":
            target = resolve_field_target(context.field_key, context.data, post.modules if post else ())
            data = inject_field_target(data, target)

        suggestions = SuggestedContent.from_payload(data)
        ledger = ArtifactLedger.from_turns(entry.tool_results for entry in output.transcript)
        suggestions = resolve_suggested_content(suggestions, ledger)

        if target is not None and (context.field_type or "").lower() in MEDIA_FIELD_TYPES:
            placed = place_field_media(
                suggestions.to_dict(),
                target,
                output.tool_results,
                base_props=self._base_props(post, target),
            )
            suggestions = SuggestedContent.from_payload(placed)
        return suggestions

    @staticmethod
    def _base_props(post: PostRecord | None, target: FieldTarget) -> Mapping[str, Any] | None:
        if post is None or target.kind != "module":
            return None
        for module in post.modules:
            if module.type == target.module_type and (
                target.order_index is None or module.order_index == target.order_index
            ):
                return module.props
        return None

    @staticmethod
    def _apply_redirect_safety(
        context: ExecutionContext,
        suggestions: SuggestedContent,
        output: LoopOutput,
    ) -> tuple[SuggestedContent, str | None]:
        redirect_post_id = suggestions.redirect_post_id or output.created_post_id
        if redirect_post_id is None or redirect_post_id == context.post_id:
            return suggestions, None
        if suggestions.has_changes:
            LOGGER.info(
                "Discarding suggestions for post %s; execution redirected to post %s",
                context.post_id,
                redirect_post_id,
            )
        return suggestions.without_changes(redirect_post_id), redirect_post_id

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def _failure_metadata(self, started: float) -> dict[str, Any]:
        return {"durationMs": round((time.perf_counter() - started) * 1000, 3)}

    def _debug_info(
        self,
        agent: AgentDefinition,
        messages: Sequence[Any],
        request: Mapping[str, Any],
    ) -> dict[str, Any]:
        assert agent.llm is not None
        return {
            "ingestion": {
                "systemPrompt": messages[0].content if messages else None,
                "conversation": [message.to_chat_param() for message in messages],
                "payload": redact_mapping(request),
            },
            "config": {
                "provider": agent.llm.provider,
                "model": agent.llm.model,
                "temperature": agent.llm.temperature,
                "useMCP": agent.llm.use_mcp,
                "allowedMCPTools": list(agent.llm.allowed_tools),
                "maxTurns": self._settings.max_turns,
            },
        }
