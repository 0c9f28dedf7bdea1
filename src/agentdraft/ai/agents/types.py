"""Agent configuration model.

Agent definitions are read-only at execution time; an :class:`ExecutionContext`
is the ephemeral per-invocation bag handed to a single execution session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

__all__ = [
    "AgentScope",
    "ViewMode",
    "AGENT_SCOPES",
    "VIEW_MODES",
    "LLMConfig",
    "AgentScopeConfig",
    "OpenEndedContextConfig",
    "StyleGuide",
    "WritingStyle",
    "ExternalAgentConfig",
    "ReactionCondition",
    "AgentReaction",
    "AgentDefinition",
    "ExecutionContext",
]

AgentScope = Literal["global", "dropdown", "field"]
ViewMode = Literal["source", "review", "ai-review"]

AGENT_SCOPES: tuple[str, ...] = ("global", "dropdown", "field")
VIEW_MODES: tuple[str, ...] = ("source", "review", "ai-review")


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


@dataclass(slots=True, frozen=True)
class LLMConfig:
    """Completion configuration of an agent.

    Attributes:
        provider: Provider name; falls back to ``Settings.default_provider``.
        model: Model identifier; falls back to ``Settings.default_model``.
        temperature: Sampling temperature.
        max_tokens: Optional completion length cap.
        use_mcp: Whether the agent may call tools.
        allowed_tools: Tool allow-list; empty means every advertised tool.
        api_key: Optional key; otherwise ``AI_PROVIDER_<PROVIDER>_API_KEY``.
        base_url: Optional OpenAI-compatible endpoint for this agent.
    """

    provider: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    use_mcp: bool = False
    allowed_tools: tuple[str, ...] = ()
    api_key: str | None = field(default=None, repr=False)
    base_url: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LLMConfig:
        return cls(
            provider=data.get("provider"),
            model=data.get("model"),
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens", data.get("maxTokens")),
            use_mcp=bool(data.get("use_mcp", data.get("useMCP", False))),
            allowed_tools=_as_tuple(data.get("allowed_tools", data.get("allowedMCPTools"))),
            api_key=data.get("api_key", data.get("apiKey")),
            base_url=data.get("base_url", data.get("baseUrl")),
        )

    def is_tool_allowed(self, name: str) -> bool:
        return not self.allowed_tools or name in self.allowed_tools


@dataclass(slots=True, frozen=True)
class AgentScopeConfig:
    """Availability of an agent in one scope."""

    enabled: bool = True
    order: int = 0
    field_keys: tuple[str, ...] = ()
    field_types: tuple[str, ...] = ()

    @classmethod
    def from_value(cls, value: Any) -> AgentScopeConfig:
        if isinstance(value, bool):
            return cls(enabled=value)
        if not isinstance(value, Mapping):
            return cls()
        return cls(
            enabled=bool(value.get("enabled", True)),
            order=int(value.get("order", 0) or 0),
            field_keys=_as_tuple(value.get("field_keys", value.get("fieldKeys"))),
            field_types=_as_tuple(value.get("field_types", value.get("fieldTypes"))),
        )


@dataclass(slots=True, frozen=True)
class OpenEndedContextConfig:
    """Free-text instruction feature: off unless explicitly enabled."""

    enabled: bool = False
    label: str | None = None
    placeholder: str | None = None
    max_chars: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> OpenEndedContextConfig:
        if not data:
            return cls()
        max_chars = data.get("max_chars", data.get("maxChars"))
        return cls(
            enabled=bool(data.get("enabled", False)),
            label=data.get("label"),
            placeholder=data.get("placeholder"),
            max_chars=int(max_chars) if max_chars is not None else None,
        )


@dataclass(slots=True, frozen=True)
class StyleGuide:
    design_style: str | None = None
    color_palette: tuple[str, ...] = ()
    image_treatments: tuple[str, ...] = ()
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> StyleGuide | None:
        if not data:
            return None
        return cls(
            design_style=data.get("design_style", data.get("designStyle")),
            color_palette=_as_tuple(data.get("color_palette", data.get("colorPalette"))),
            image_treatments=_as_tuple(data.get("image_treatments", data.get("imageTreatments"))),
            notes=data.get("notes"),
        )


@dataclass(slots=True, frozen=True)
class WritingStyle:
    tone: str | None = None
    voice: str | None = None
    conventions: tuple[str, ...] = ()
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> WritingStyle | None:
        if not data:
            return None
        return cls(
            tone=data.get("tone"),
            voice=data.get("voice"),
            conventions=_as_tuple(data.get("conventions")),
            notes=data.get("notes"),
        )


@dataclass(slots=True, frozen=True)
class ExternalAgentConfig:
    """Webhook endpoint of an ``external`` agent.

    Attributes:
        url: Production webhook URL.
        dev_url: Used instead of ``url`` in development when set.
        secret: Sent as ``Authorization: Bearer <secret>`` or under ``secret_header``.
        secret_header: Custom header name for the secret.
        timeout_ms: Request timeout in milliseconds.
    """

    url: str = ""
    dev_url: str | None = None
    secret: str | None = field(default=None, repr=False)
    secret_header: str | None = None
    timeout_ms: int = 30_000

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ExternalAgentConfig | None:
        if not data:
            return None
        timeout = data.get("timeout_ms", data.get("timeout"))
        return cls(
            url=str(data.get("url") or "").strip(),
            dev_url=data.get("dev_url", data.get("devUrl")),
            secret=data.get("secret"),
            secret_header=data.get("secret_header", data.get("secretHeader")),
            timeout_ms=int(timeout) if timeout is not None else 30_000,
        )

    def webhook_url(self, *, development: bool = False) -> str:
        if development and self.dev_url:
            return self.dev_url
        return self.url

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            if self.secret_header:
                headers[self.secret_header] = self.secret
            else:
                headers["Authorization"] = f"Bearer {self.secret}"
        return headers


@dataclass(slots=True, frozen=True)
class ReactionCondition:
    """``on_condition`` trigger: compare a dot path of the outcome with ``value``."""

    field: str
    operator: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class AgentReaction:
    """Follow-up action run after an execution (webhook, Slack message, tool call).

    Attributes:
        type: ``webhook``, ``slack``, ``mcp_tool``, ``email`` or ``custom``.
        trigger: ``always``, ``on_success``, ``on_error`` or ``on_condition``.
        condition: Required for ``on_condition``.
        config: Type-specific settings (``url``, ``bodyTemplate``, ``toolName``...).
        enabled: Disabled reactions never run.
    """

    type: str
    trigger: str = "always"
    condition: ReactionCondition | None = None
    config: Mapping[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AgentReaction:
        condition = data.get("condition")
        return cls(
            type=str(data.get("type") or ""),
            trigger=str(data.get("trigger") or "always"),
            condition=(
                ReactionCondition(
                    field=str(condition.get("field") or ""),
                    operator=str(condition.get("operator") or ""),
                    value=condition.get("value"),
                )
                if isinstance(condition, Mapping)
                else None
            ),
            config=dict(data.get("config") or {}),
            enabled=data.get("enabled") is not False,
        )


@dataclass(slots=True, frozen=True)
class AgentDefinition:
    """Immutable agent configuration.

    Attributes:
        id: Stable identifier.
        name: Display name.
        description: Optional description shown in catalogs.
        type: ``internal`` for prompt-driven agents, ``external`` for webhooks.
        enabled: Agents can be switched off globally.
        scopes: Per-scope availability.
        open_ended: Free-text instruction feature.
        system_prompt: Prompt template with ``{{variable}}`` interpolation.
        llm: Completion configuration; required to execute.
        style_guide: Optional visual style block appended to the prompt.
        writing_style: Optional writing style block appended to the prompt.
        external: Webhook configuration; required for ``external`` agents.
        reactions: Follow-up actions run after every execution.
    """

    id: str
    name: str
    description: str = ""
    type: str = "internal"
    enabled: bool = True
    scopes: Mapping[str, AgentScopeConfig] = field(default_factory=dict)
    open_ended: OpenEndedContextConfig = field(default_factory=OpenEndedContextConfig)
    system_prompt: str | None = None
    llm: LLMConfig | None = None
    style_guide: StyleGuide | None = None
    writing_style: WritingStyle | None = None
    external: ExternalAgentConfig | None = None
    reactions: tuple[AgentReaction, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AgentDefinition:
        agent_id = str(data.get("id") or "").strip()
        if not agent_id:
            raise ValueError("Agent definition requires an 'id'")
        raw_scopes = data.get("scopes") or {}
        if isinstance(raw_scopes, Sequence) and not isinstance(raw_scopes, str):
            raw_scopes = {str(name): True for name in raw_scopes}
        scopes = {
            str(name): AgentScopeConfig.from_value(value)
            for name, value in dict(raw_scopes).items()
        }
        llm_data = data.get("llm") or (data.get("internal_config") or {}).get("llm")
        return cls(
            id=agent_id,
            name=str(data.get("name") or agent_id),
            description=str(data.get("description") or ""),
            type=str(data.get("type") or "internal"),
            enabled=bool(data.get("enabled", True)),
            scopes=scopes,
            open_ended=OpenEndedContextConfig.from_mapping(
                data.get("open_ended", data.get("openEndedContext"))
            ),
            system_prompt=data.get("system_prompt", data.get("systemPrompt")),
            llm=LLMConfig.from_mapping(llm_data) if llm_data else None,
            style_guide=StyleGuide.from_mapping(data.get("style_guide", data.get("styleGuide"))),
            writing_style=WritingStyle.from_mapping(
                data.get("writing_style", data.get("writingStyle"))
            ),
            external=ExternalAgentConfig.from_mapping(data.get("external")),
            reactions=tuple(
                AgentReaction.from_mapping(entry)
                for entry in data.get("reactions") or ()
                if isinstance(entry, Mapping)
            ),
        )

    @property
    def use_tools(self) -> bool:
        return bool(self.llm and self.llm.use_mcp)

    def scope_config(self, scope: str) -> AgentScopeConfig | None:
        return self.scopes.get(scope)


@dataclass(slots=True)
class ExecutionContext:
    """Per-invocation context owned by one execution session.

    ``data`` is a free-form bag: ``postId``, ``post`` snapshot, ``fieldKey`` /
    ``fieldType`` for field scope, ``viewMode``, ``moduleInstanceId`` and
    ``conversationHistory``.
    """

    agent: AgentDefinition
    scope: AgentScope
    user_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def post_id(self) -> str | None:
        value = self.data.get("postId")
        return str(value) if value is not None else None

    @property
    def field_key(self) -> str | None:
        return self.data.get("fieldKey")

    @property
    def field_type(self) -> str | None:
        return self.data.get("fieldType")

    @property
    def view_mode(self) -> str | None:
        return self.data.get("viewMode")

    @property
    def history(self) -> list[Mapping[str, Any]]:
        history = self.data.get("conversationHistory") or []
        return [item for item in history if isinstance(item, Mapping)]
