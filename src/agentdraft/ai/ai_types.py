"""Shared typing contracts for the completion provider boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

__all__ = [
    "TokenCounterProtocol",
    "ProviderConfig",
    "CompletionOptions",
    "CompletionUsage",
    "CompletionResult",
    "CompletionClient",
    "ToolInvoker",
    "ToolDescriptor",
]


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Return the precise token count for *text*."""
        ...

    def estimate(self, text: str) -> int:
        """Return a deterministic fallback estimate when precise counts fail."""
        ...


@dataclass(slots=True, frozen=True)
class ProviderConfig:
    """Resolved provider settings for a single completion call.

    Attributes:
        provider: Provider name (``openai``, ``anthropic``, ``google`` ...).
        model: Model identifier.
        api_key: Secret used to authenticate; never logged.
        base_url: Optional OpenAI-compatible endpoint override.
        options: Extra provider options passed through verbatim.
    """

    provider: str
    model: str
    api_key: str = field(repr=False)
    base_url: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class CompletionOptions:
    """Sampling options for a completion call."""

    temperature: float | None = 0.7
    max_tokens: int | None = None
    top_p: float | None = None
    stop: tuple[str, ...] | None = None


@dataclass(slots=True, frozen=True)
class CompletionUsage:
    """Token usage reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: CompletionUsage) -> CompletionUsage:
        return CompletionUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Generated text plus usage metadata."""

    content: str
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    metadata: Mapping[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    """Messages in, text and usage out."""

    async def complete(
        self,
        messages: Sequence[Mapping[str, Any]],
        options: CompletionOptions,
        provider_config: ProviderConfig,
    ) -> CompletionResult:
        ...


class ToolInvoker(Protocol):
    """Opaque tool sandbox: name and params in, result out (or raise)."""

    async def call_tool(
        self,
        name: str,
        params: Mapping[str, Any],
        agent_id: str,
        mode: str | None = None,
    ) -> Any:
        ...


@dataclass(slots=True, frozen=True)
class ToolDescriptor:
    """Name and description of a tool advertised to the model."""

    name: str
    description: str = ""
