"""Draft persistence contract and an in-memory transactional store.

Posts carry live fields plus two sparse draft tiers (``review_draft`` and
``ai_review_draft``). Module instances carry the analogous per-tier props and
per-post overrides. Writes go through :meth:`DraftStore.apply`, which commits a
whole :class:`~agentdraft.drafts.merge.MergePlan` or nothing.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

from ..ai.orchestration.errors import DraftConflictError, PersistenceError
from ..services.settings import Settings

if TYPE_CHECKING:
    from .merge import MergePlan

__all__ = [
    "TIERS",
    "POST_COLUMNS",
    "PROPS_COLUMNS",
    "OVERRIDES_COLUMNS",
    "ModuleRecord",
    "PostRecord",
    "Revision",
    "DraftStore",
    "InMemoryDraftStore",
]

LOGGER = logging.getLogger(__name__)

TIERS: tuple[str, ...] = ("source", "review", "ai-review")

# Column written for each tier; ``fields`` is the live post row.
POST_COLUMNS: Mapping[str, str] = {
    "source": "fields",
    "review": "review_draft",
    "ai-review": "ai_review_draft",
}
PROPS_COLUMNS: Mapping[str, str] = {
    "source": "props",
    "review": "review_props",
    "ai-review": "ai_review_props",
}
OVERRIDES_COLUMNS: Mapping[str, str] = {
    "source": "overrides",
    "review": "review_overrides",
    "ai-review": "ai_review_overrides",
}


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ModuleRecord:
    """One module placed on a post.

    Attributes:
        post_module_id: Placement id (unique per post).
        module_instance_id: Id of the module instance holding the props.
        type: Module type.
        order_index: Position on the post.
        scope: ``post`` for instances owned by the post, ``global`` for shared ones.
        props: Live props of the instance.
        overrides: Live per-post overrides (used by global instances).
    """

    post_module_id: str
    module_instance_id: str
    type: str
    order_index: int
    scope: str = "post"
    props: dict[str, Any] = field(default_factory=dict)
    overrides: dict[str, Any] = field(default_factory=dict)
    review_props: dict[str, Any] | None = None
    ai_review_props: dict[str, Any] | None = None
    review_overrides: dict[str, Any] | None = None
    ai_review_overrides: dict[str, Any] | None = None

    @property
    def is_global(self) -> bool:
        return self.scope == "global"

    def column(self, name: str) -> dict[str, Any] | None:
        if name not in _MODULE_COLUMNS:
            raise KeyError(name)
        return getattr(self, name)

    def to_payload(self) -> dict[str, Any]:
        return {
            "postModuleId": self.post_module_id,
            "moduleInstanceId": self.module_instance_id,
            "type": self.type,
            "orderIndex": self.order_index,
            "scope": self.scope,
            "props": copy.deepcopy(self.props),
            "overrides": copy.deepcopy(self.overrides) or None,
        }


_MODULE_COLUMNS = frozenset({*PROPS_COLUMNS.values(), *OVERRIDES_COLUMNS.values()})


@dataclass(slots=True)
class PostRecord:
    """A post with its live fields, draft tiers and modules."""

    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    review_draft: dict[str, Any] | None = None
    ai_review_draft: dict[str, Any] | None = None
    modules: list[ModuleRecord] = field(default_factory=list)

    def column(self, name: str) -> dict[str, Any] | None:
        if name not in POST_COLUMNS.values():
            raise KeyError(name)
        return getattr(self, name)

    def find_module(self, post_module_id: str) -> ModuleRecord | None:
        for module in self.modules:
            if module.post_module_id == post_module_id:
                return module
        return None

    def to_payload(self) -> dict[str, Any]:
        """Canonical snapshot handed to agents (live values)."""
        return {
            "post": {"id": self.id, **copy.deepcopy(self.fields)},
            "modules": [
                module.to_payload()
                for module in sorted(self.modules, key=lambda m: m.order_index)
            ],
        }


@dataclass(slots=True, frozen=True)
class Revision:
    """Immutable audit snapshot written after every successful apply."""

    post_id: str
    tier: str
    version: int
    snapshot: Mapping[str, Any]
    user_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


# -----------------------------------------------------------------------------
# Store contract
# -----------------------------------------------------------------------------


class DraftStore(Protocol):
    """Read/write contract consumed by the execution session."""

    async def get_post(self, post_id: str) -> PostRecord | None:
        """Return a detached copy of the post, or ``None``."""
        ...

    async def get_version(self, post_id: str, tier: str) -> int:
        """Return the optimistic version stamp of ``(post_id, tier)``."""
        ...

    async def apply(self, plan: "MergePlan", *, user_id: str | None = None) -> int:
        """Atomically write ``plan``; return the new version stamp."""
        ...

    async def list_revisions(self, post_id: str) -> list[Revision]:
        ...


class InMemoryDraftStore:
    """Transactional in-memory :class:`DraftStore`.

    ``apply`` stages every write on a deep copy of the post and swaps it in only
    when all writes succeed, so a failing plan leaves prior tiers untouched.
    """

    def __init__(
        self,
        posts: Iterable[PostRecord] = (),
        *,
        revision_limit: int = 20,
        auto_prune: bool = True,
    ) -> None:
        self._posts: dict[str, PostRecord] = {post.id: post for post in posts}
        self._versions: dict[tuple[str, str], int] = {}
        self._revisions: dict[str, list[Revision]] = {}
        self._revision_limit = max(0, int(revision_limit))
        self._auto_prune = auto_prune
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, posts: Iterable[PostRecord] = ()) -> InMemoryDraftStore:
        return cls(
            posts,
            revision_limit=settings.revision_limit,
            auto_prune=settings.revision_auto_prune,
        )

    def add_post(self, post: PostRecord) -> None:
        self._posts[post.id] = post

    async def get_post(self, post_id: str) -> PostRecord | None:
        post = self._posts.get(post_id)
        return copy.deepcopy(post) if post is not None else None

    async def get_version(self, post_id: str, tier: str) -> int:
        return self._versions.get((post_id, tier), 0)

    async def list_revisions(self, post_id: str) -> list[Revision]:
        return list(self._revisions.get(post_id, ()))

    async def apply(self, plan: "MergePlan", *, user_id: str | None = None) -> int:
        async with self._lock:
            current = self._posts.get(plan.post_id)
            if current is None:
                raise PersistenceError(
                    f"Post {plan.post_id} not found",
                    entity="posts",
                    entity_id=plan.post_id,
                )

            key = (plan.post_id, plan.tier)
            current_version = self._versions.get(key, 0)
            if current_version != plan.base_version:
                raise DraftConflictError(
                    f"Draft tier '{plan.tier}' of post {plan.post_id} changed since the merge was computed",
                    entity="posts",
                    entity_id=plan.post_id,
                    column=POST_COLUMNS.get(plan.tier),
                    expected_version=plan.base_version,
                    current_version=current_version,
                )

            staged = copy.deepcopy(current)
            self._stage(staged, plan)

            self._posts[plan.post_id] = staged
            version = current_version + 1
            self._versions[key] = version
            self._record_revision(plan, version, user_id)
            LOGGER.debug(
                "Applied merge plan to post %s tier %s (version %s, %s module write(s))",
                plan.post_id,
                plan.tier,
                version,
                len(plan.module_writes),
            )
            return version

    def _stage(self, staged: PostRecord, plan: "MergePlan") -> None:
        if plan.post_fields is not None:
            column = POST_COLUMNS[plan.tier]
            setattr(staged, column, copy.deepcopy(dict(plan.post_fields)))
        for write in plan.module_writes:
            module = staged.find_module(write.post_module_id)
            if module is None:
                raise PersistenceError(
                    f"Failed to write post_modules.{write.column}: placement {write.post_module_id} not found",
                    entity="post_modules",
                    entity_id=write.post_module_id,
                    column=write.column,
                )
            if write.column not in _MODULE_COLUMNS:
                raise PersistenceError(
                    f"Unknown module column {write.column}",
                    entity="module_instances",
                    entity_id=module.module_instance_id,
                    column=write.column,
                )
            setattr(module, write.column, copy.deepcopy(dict(write.value)))

    def _record_revision(self, plan: "MergePlan", version: int, user_id: str | None) -> None:
        revisions = self._revisions.setdefault(plan.post_id, [])
        revisions.append(
            Revision(
                post_id=plan.post_id,
                tier=plan.tier,
                version=version,
                snapshot=plan.snapshot(),
                user_id=user_id,
            )
        )
        if self._auto_prune and self._revision_limit and len(revisions) > self._revision_limit:
            pruned = len(revisions) - self._revision_limit
            del revisions[:pruned]
            LOGGER.debug("Pruned %s revision(s) of post %s", pruned, plan.post_id)
