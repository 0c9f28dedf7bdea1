"""Async completion client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import hashlib
import inspect
import json
import logging
import math
from typing import Any, Dict, List, Mapping, Sequence, cast

import httpx
import tiktoken
from openai import APIConnectionError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .ai_types import (
    CompletionOptions,
    CompletionResult,
    CompletionUsage,
    ProviderConfig,
    TokenCounterProtocol,
)
from .orchestration.errors import ConfigurationError, ProviderError
from ..services.settings import Settings

__all__ = [
    "AIClient",
    "ApproxByteCounter",
    "TiktokenCounter",
    "TokenCounterRegistry",
    "PROVIDER_BASE_URLS",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4

# OpenAI-compatible endpoints for the supported providers.
PROVIDER_BASE_URLS: Mapping[str, str | None] = {
    "openai": None,
    "anthropic": "https://api.anthropic.com/v1/",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
}


class ApproxByteCounter(TokenCounterProtocol):
    """Deterministic fallback counter that estimates tokens via byte length."""

    def __init__(self, *, model_name: str | None = None, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter(TokenCounterProtocol):
    """Token counter backed by OpenAI's tiktoken package."""

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)
        self._fallback = ApproxByteCounter(model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        try:
            return len(self._encoding.encode(text))
        except Exception:  # pragma: no cover - encoder edge cases
            LOGGER.debug("tiktoken encode failed; falling back to approximation", exc_info=True)
            return self._fallback.estimate(text)

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    def _load_encoding(self, model_name: str, encoding_name: str | None):
        try:
            if encoding_name:
                return tiktoken.get_encoding(encoding_name)
            return tiktoken.encoding_for_model(model_name)
        except Exception:  # pragma: no cover - falls back to default encoding
            LOGGER.debug("Falling back to cl100k_base encoding for model %s", model_name)
            return tiktoken.get_encoding("cl100k_base")


class TokenCounterRegistry:
    """Registry maintaining tokenizer implementations per model."""

    def __init__(self, *, fallback: TokenCounterProtocol | None = None) -> None:
        self._fallback = fallback or ApproxByteCounter()
        self._counters: Dict[str, TokenCounterProtocol] = {}

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = self._normalize_key(model_name)
        if not key:
            raise ValueError("model_name is required for token counter registration")
        self._counters[key] = counter

    def has(self, model_name: str | None) -> bool:
        key = self._normalize_key(model_name)
        return bool(key and key in self._counters)

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        key = self._normalize_key(model_name)
        if key and key in self._counters:
            return self._counters[key]
        return self._fallback

    def count(self, model_name: str | None, text: str) -> int:
        counter = self.get(model_name)
        try:
            return counter.count(text)
        except Exception:  # pragma: no cover - tokenizer edge cases
            LOGGER.debug("Token counter failed; falling back to estimate", exc_info=True)
            return counter.estimate(text)

    @staticmethod
    def _normalize_key(model_name: str | None) -> str:
        return (model_name or "").strip().lower()


class AIClient:
    """Completion Client Adapter: ordered messages in, text plus usage out.

    One :class:`AsyncOpenAI` instance is kept per provider endpoint and key so
    concurrent sessions can share connections. Anthropic and Google are
    reached through their OpenAI-compatible endpoints.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client_factory: Any | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._client_factory = client_factory or self._build_client
        self._clients: Dict[str, AsyncOpenAI] = {}
        self._token_registry = token_registry or TokenCounterRegistry()

    @property
    def settings(self) -> Settings:
        return self._settings

    @staticmethod
    def validate_config(config: ProviderConfig) -> None:
        """Fail fast with a descriptive error when the provider config is incomplete."""

        if not config.provider:
            raise ConfigurationError("AI provider is required")
        if not config.api_key:
            raise ConfigurationError(f"API key is required for provider: {config.provider}")
        if not config.model:
            raise ConfigurationError(f"Model is required for provider: {config.provider}")
        if config.provider not in PROVIDER_BASE_URLS and not config.base_url:
            raise ConfigurationError(
                f"Unsupported AI provider: {config.provider}",
                details={"supported": sorted(PROVIDER_BASE_URLS)},
            )

    async def complete(
        self,
        messages: Sequence[Mapping[str, Any]],
        options: CompletionOptions,
        provider_config: ProviderConfig,
    ) -> CompletionResult:
        """Run a single non-streaming chat completion."""

        self.validate_config(provider_config)
        payload = self._build_chat_payload(self._coerce_messages(messages), options, provider_config)
        LOGGER.debug(
            "Starting chat completion via %s/%s with %s message(s)",
            provider_config.provider,
            provider_config.model,
            len(payload["messages"]),
        )
        if self._settings.debug:
            self._log_prompt_payload(payload)

        client = self._client_for(provider_config)
        response = None
        async for attempt in self._retrying():
            with attempt:
                response = await client.chat.completions.create(**payload)
        if response is None or not getattr(response, "choices", None):
            raise ProviderError(
                f"{provider_config.provider} returned empty response",
                details={"model": provider_config.model},
            )

        content = response.choices[0].message.content or ""
        usage = self._usage_from_response(response, payload["messages"], content, provider_config.model)
        return CompletionResult(
            content=content,
            usage=usage,
            metadata={
                "model": getattr(response, "model", None) or provider_config.model,
                "provider": provider_config.provider,
                "finish_reason": getattr(response.choices[0], "finish_reason", None),
            },
        )

    def count_tokens(self, text: str, *, model: str | None = None) -> int:
        if not text:
            return 0
        model_name = (model or "").strip()
        if model_name and not self._token_registry.has(model_name):
            try:
                self._token_registry.register(model_name, self._build_token_counter(model_name))
            except ValueError:
                LOGGER.debug("Unable to register token counter for model %s", model_name)
        return self._token_registry.count(model_name, text)

    @staticmethod
    def _build_token_counter(model_name: str) -> TokenCounterProtocol:
        # Loading an encoding may hit the network; usage estimates must not fail a completion.
        try:
            return TiktokenCounter(model_name)
        except Exception as exc:
            LOGGER.debug("Failed to initialize tiktoken counter for %s: %s", model_name, exc)
            return ApproxByteCounter(model_name=model_name)

    def _usage_from_response(
        self,
        response: Any,
        messages: Sequence[Mapping[str, Any]],
        content: str,
        model: str,
    ) -> CompletionUsage:
        usage = getattr(response, "usage", None)
        if usage is not None:
            prompt = int(getattr(usage, "prompt_tokens", 0) or 0)
            completion = int(getattr(usage, "completion_tokens", 0) or 0)
            total = int(getattr(usage, "total_tokens", 0) or prompt + completion)
            return CompletionUsage(prompt, completion, total)
        # Some compatible endpoints omit usage; estimate locally.
        prompt = sum(self.count_tokens(str(m.get("content", "")), model=model) for m in messages)
        completion = self.count_tokens(content, model=model)
        return CompletionUsage(prompt, completion, prompt + completion)

    def _client_for(self, config: ProviderConfig) -> AsyncOpenAI:
        base_url = config.base_url or self._settings.base_url or PROVIDER_BASE_URLS.get(config.provider)
        fingerprint = hashlib.sha256(config.api_key.encode("utf-8")).hexdigest()[:16]
        key = f"{config.provider}|{base_url or ''}|{fingerprint}"
        client = self._clients.get(key)
        if client is None:
            client = self._client_factory(api_key=config.api_key, base_url=base_url)
            self._clients[key] = client
        return client

    def _build_client(self, *, api_key: str, base_url: str | None) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=self._settings.request_timeout,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(self, messages: Sequence[Mapping[str, Any]]) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, Mapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                raise TypeError("Messages must be mapping-like objects")
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        options: CompletionOptions,
        config: ProviderConfig,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": list(messages),
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop:
            payload["stop"] = list(options.stop)
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close every cached OpenAI client to release network resources."""

        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            close = getattr(client, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result
