"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from agentdraft.ai.agents.catalog import AgentCatalog
from agentdraft.drafts.schema import ModuleRegistry
from agentdraft.drafts.store import InMemoryDraftStore
from agentdraft.services.settings import Settings

from tests.helpers import make_agent, make_post


@pytest.fixture
def settings() -> Settings:
    return Settings(max_turns=10, revision_limit=5)


@pytest.fixture
def agent():
    return make_agent()


@pytest.fixture
def catalog(agent) -> AgentCatalog:
    return AgentCatalog([agent])


@pytest.fixture
def post():
    return make_post()


@pytest.fixture
def store(settings, post) -> InMemoryDraftStore:
    return InMemoryDraftStore.from_settings(settings, [post])


@pytest.fixture
def registry() -> ModuleRegistry:
    return ModuleRegistry.from_mappings(
        [
            {
                "type": "prose",
                "fields": [{"name": "content", "kind": "richtext"}],
            },
            {
                "type": "hero",
                "fields": [
                    {"name": "title", "kind": "text"},
                    {"name": "image", "kind": "media", "storeAs": "id"},
                ],
            },
        ]
    )
