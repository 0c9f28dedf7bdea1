"""Bootstrap helpers for hosts embedding the suggestion engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from .ai.agents.catalog import AgentCatalog
from .ai.ai_types import CompletionClient, ToolDescriptor, ToolInvoker
from .ai.client import AIClient
from .ai.orchestration.session import ExecutionSession
from .drafts.schema import ModuleRegistry
from .drafts.store import DraftStore, InMemoryDraftStore, PostRecord
from .services.settings import Settings, load_settings
from .utils import logging as logging_utils

__all__ = ["create_session"]

_LOGGER = logging.getLogger(__name__)


def create_session(
    catalog: AgentCatalog | Path | str,
    *,
    settings: Settings | None = None,
    client: CompletionClient | None = None,
    store: DraftStore | None = None,
    posts: Iterable[PostRecord] | None = None,
    invoker: ToolInvoker | None = None,
    registry: ModuleRegistry | None = None,
    tools: Sequence[ToolDescriptor] = (),
    configure_logs: bool = True,
    force_logging: bool = False,
) -> ExecutionSession:
    """Build an :class:`ExecutionSession` from settings.

    Logging is configured from ``settings`` first. ``catalog`` may be a loaded
    catalog or the path of a YAML/JSON agent file. When no ``store`` is given
    but ``posts`` are, an in-memory store with the settings' revision policy
    is created for them.
    """

    active = settings or load_settings()
    if configure_logs:
        logging_utils.configure_logging(active, force=force_logging)

    agents = catalog if isinstance(catalog, AgentCatalog) else AgentCatalog.load(catalog)
    if store is None and posts is not None:
        store = InMemoryDraftStore.from_settings(active, posts)
    _LOGGER.debug("Creating execution session with %s agent(s)", len(agents))
    return ExecutionSession(
        client or AIClient(active),
        catalog=agents,
        store=store,
        invoker=invoker,
        registry=registry,
        tools=tools,
        settings=active,
    )
