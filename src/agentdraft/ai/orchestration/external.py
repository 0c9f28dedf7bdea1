"""Webhook client for ``external`` agents.

External agents run outside the engine: the request payload is POSTed to the
agent's webhook and the JSON answer is treated exactly like a model's terminal
response.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx

from ..agents.types import AgentDefinition
from .errors import ConfigurationError, ExternalAgentError

__all__ = ["ExternalAgentClient"]

LOGGER = logging.getLogger(__name__)
_ERROR_BODY_LIMIT = 500


class ExternalAgentClient:
    """Calls external agent webhooks over a shared :class:`httpx.AsyncClient`.

    Args:
        http_client: Client to reuse; one is created lazily otherwise.
        development: Prefer each agent's ``dev_url`` when it has one.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, *, development: bool = False) -> None:
        self._http = http_client
        self._owns_client = http_client is None
        self._development = development

    async def call(self, agent: AgentDefinition, payload: Mapping[str, Any]) -> str:
        """POST ``payload`` to the agent's webhook and return the response text."""

        config = agent.external
        if config is None:
            raise ConfigurationError(
                f"External agent {agent.id} is missing its webhook configuration",
                details={"agent_id": agent.id},
            )
        url = config.webhook_url(development=self._development)
        if not url:
            raise ConfigurationError(
                f"Webhook URL is not configured for agent {agent.id}",
                details={"agent_id": agent.id},
            )

        LOGGER.debug("Calling external agent %s (timeout %sms)", agent.id, config.timeout_ms)
        try:
            response = await self._client().post(
                url,
                content=json.dumps(payload, ensure_ascii=False, default=str),
                headers=config.headers(),
                timeout=config.timeout_ms / 1000,
            )
        except httpx.TimeoutException as exc:
            raise ExternalAgentError(
                f"External agent {agent.id} timed out after {config.timeout_ms}ms",
                details={"agent_id": agent.id},
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalAgentError(
                f"External agent {agent.id} request failed: {type(exc).__name__}",
                details={"agent_id": agent.id},
            ) from exc

        if response.is_error:
            raise ExternalAgentError(
                f"External agent {agent.id} failed: {response.status_code} {response.text[:_ERROR_BODY_LIMIT]}".rstrip(),
                details={"agent_id": agent.id},
                status_code=response.status_code,
            )
        return response.text

    async def aclose(self) -> None:
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http
