"""Explicitly constructed agent catalog."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ruamel.yaml import YAML
from ruamel.yaml.error import MarkedYAMLError

from ..orchestration.errors import ConfigurationError
from .types import AGENT_SCOPES, AgentDefinition

__all__ = ["AgentCatalog"]

LOGGER = logging.getLogger(__name__)


class AgentCatalog:
    """Read-only collection of agent definitions keyed by id.

    The catalog is passed into :class:`~agentdraft.ai.orchestration.session.ExecutionSession`
    rather than looked up globally, so tests can build one from fixtures.
    """

    def __init__(self, agents: Iterable[AgentDefinition] = ()) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        for agent in agents:
            if agent.id in self._agents:
                raise ConfigurationError(
                    f"Duplicate agent id: {agent.id}", details={"agent_id": agent.id}
                )
            self._agents[agent.id] = agent

    @classmethod
    def from_mappings(cls, entries: Sequence[Mapping[str, Any]]) -> AgentCatalog:
        agents = []
        for index, entry in enumerate(entries):
            try:
                agents.append(AgentDefinition.from_mapping(entry))
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"Invalid agent definition at index {index}: {exc}",
                    details={"index": index},
                ) from exc
        return cls(agents)

    @classmethod
    def load(cls, path: Path | str) -> AgentCatalog:
        """Load a catalog from a YAML or JSON file.

        The document is either a list of agent mappings or a mapping with an
        ``agents`` list.
        """

        source = Path(path)
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"Unable to read agent catalog {source}: {exc}", details={"path": str(source)}
            ) from exc

        if source.suffix.lower() == ".json":
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(
                    f"Agent catalog {source} is not valid JSON: {exc.msg}",
                    details={"path": str(source), "line": exc.lineno},
                ) from exc
        else:
            try:
                payload = _create_yaml_parser().load(text)
            except MarkedYAMLError as exc:
                detail = exc.problem or str(exc)
                raise ConfigurationError(
                    f"Agent catalog {source} is not valid YAML: {detail}",
                    details={"path": str(source)},
                ) from exc

        if isinstance(payload, Mapping):
            payload = payload.get("agents") or []
        if not isinstance(payload, list):
            raise ConfigurationError(
                f"Agent catalog {source} must contain a list of agents",
                details={"path": str(source)},
            )
        catalog = cls.from_mappings(payload)
        LOGGER.debug("Loaded %s agent(s) from %s", len(catalog), source)
        return catalog

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self):
        return iter(self._agents.values())

    def get(self, agent_id: str) -> AgentDefinition | None:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise ConfigurationError(f"Agent not found: {agent_id}", details={"agent_id": agent_id})
        return agent

    def list_by_scope(self, scope: str) -> list[AgentDefinition]:
        """Enabled agents available in ``scope``, sorted by scope order then name."""

        if scope not in AGENT_SCOPES:
            return []
        matches = []
        for agent in self._agents.values():
            config = agent.scope_config(scope)
            if agent.enabled and config is not None and config.enabled:
                matches.append((config.order, agent.name.lower(), agent))
        matches.sort(key=lambda item: (item[0], item[1]))
        return [agent for _, _, agent in matches]

    def is_available_in_scope(
        self,
        agent_id: str,
        scope: str,
        field_key: str | None = None,
        field_type: str | None = None,
    ) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None or not agent.enabled:
            return False
        config = agent.scope_config(scope)
        if config is None or not config.enabled:
            return False
        if scope != "field":
            return True
        # Field restrictions: an empty list means any field.
        if config.field_keys and field_key not in config.field_keys:
            return False
        if config.field_types and field_type not in config.field_types:
            return False
        return True


def _create_yaml_parser() -> YAML:
    parser = YAML(typ="safe")
    parser.allow_duplicate_keys = False
    return parser
