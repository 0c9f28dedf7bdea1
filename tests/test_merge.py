"""Tests for the draft merge engine."""

from __future__ import annotations

import pytest

from agentdraft.ai.orchestration.errors import ConfigurationError
from agentdraft.ai.orchestration.types import ModuleUpdate, SuggestedContent
from agentdraft.drafts.merge import (
    DraftMergeEngine,
    layer_base,
    recursive_merge,
    select_target_tier,
)
from agentdraft.drafts.store import InMemoryDraftStore, PostRecord

from tests.helpers import make_post


def _writes_by_module(plan) -> dict[str, dict]:
    return {write.post_module_id: dict(write.value) for write in plan.module_writes}


# -----------------------------------------------------------------------------
# recursive_merge
# -----------------------------------------------------------------------------


class TestRecursiveMerge:
    """Tests for the deep merge primitive."""

    def test_nested_objects_merge(self) -> None:
        base = {"cta": {"label": "Go", "href": "/a"}, "title": "T"}
        assert recursive_merge(base, {"cta": {"label": "Buy"}}) == {
            "cta": {"label": "Buy", "href": "/a"},
            "title": "T",
        }

    def test_arrays_replace_wholesale(self) -> None:
        base = {"items": [1, 2, 3], "tags": ["a"]}
        assert recursive_merge(base, {"items": [9]}) == {"items": [9], "tags": ["a"]}

    def test_object_replaced_by_scalar(self) -> None:
        assert recursive_merge({"cta": {"label": "Go"}}, {"cta": None}) == {"cta": None}

    def test_inputs_are_not_mutated(self) -> None:
        base = {"cta": {"label": "Go"}}
        incoming = {"cta": {"href": "/x"}}
        merged = recursive_merge(base, incoming)
        merged["cta"]["label"] = "Changed"
        assert base == {"cta": {"label": "Go"}}
        assert incoming == {"cta": {"href": "/x"}}

    def test_none_arguments(self) -> None:
        assert recursive_merge(None, None) == {}
        assert recursive_merge({"a": 1}, None) == {"a": 1}


class TestTierSelection:
    def test_field_scope_uses_view_mode(self) -> None:
        assert select_target_tier("field", "review") == "review"
        assert select_target_tier("field", None) == "source"

    @pytest.mark.parametrize("view_mode", ["ai_review", "draft", "live"])
    def test_unknown_view_mode_is_rejected(self, view_mode) -> None:
        with pytest.raises(ConfigurationError) as excinfo:
            select_target_tier("field", view_mode)
        assert excinfo.value.details["view_mode"] == view_mode

    def test_other_scopes_use_ai_review(self) -> None:
        assert select_target_tier("dropdown", "source") == "ai-review"
        assert select_target_tier("global") == "ai-review"

    def test_webhook_agents_write_review(self) -> None:
        assert select_target_tier("dropdown", agent_type="external") == "review"
        assert select_target_tier("field", "ai-review", agent_type="external") == "ai-review"

    def test_ai_review_builds_on_review(self) -> None:
        assert layer_base({"title": "Live", "slug": "s"}, {"title": "Reviewed"}, "ai-review") == {
            "title": "Reviewed",
            "slug": "s",
        }
        assert layer_base({"title": "Live"}, {"title": "Reviewed"}, "review") == {"title": "Live"}


# -----------------------------------------------------------------------------
# Post fields
# -----------------------------------------------------------------------------


class TestPostMerge:
    """Tests for merging post-level fields."""

    def test_only_present_keys_change(self) -> None:
        post = make_post(title="Old", excerpt="Short", slug="old")
        plan = DraftMergeEngine().plan(post, SuggestedContent(post={"title": "X"}), tier="ai-review")
        assert plan.post_fields == {"title": "X", "excerpt": "Short", "slug": "old"}
        assert plan.applied == ("post.title",)
        assert plan.post_column == "ai_review_draft"

    def test_existing_ai_review_draft_is_preserved(self) -> None:
        post = make_post(title="Old", excerpt="Short")
        post.ai_review_draft = {"title": "Old", "excerpt": "Drafted excerpt"}
        plan = DraftMergeEngine().plan(post, SuggestedContent(post={"title": "X"}), tier="ai-review")
        assert plan.post_fields == {"title": "X", "excerpt": "Drafted excerpt"}

    def test_unchanged_values_are_not_reported(self) -> None:
        post = make_post(title="Old", excerpt="Short", slug="old")
        post.ai_review_draft = {"excerpt": "Drafted"}
        suggestion = SuggestedContent(post={"title": "Old", "excerpt": "Drafted", "slug": "new"})

        plan = DraftMergeEngine().plan(post, suggestion, tier="ai-review")

        assert plan.applied == ("post.slug",)
        assert plan.post_fields == {"title": "Old", "excerpt": "Drafted", "slug": "new"}

    def test_reference_objects_are_flattened(self) -> None:
        post = make_post(title="Old")
        plan = DraftMergeEngine().plan(
            post, SuggestedContent(post={"featuredImageId": {"id": 42}}), tier="ai-review"
        )
        assert plan.post_fields["featuredImageId"] == "42"

    @pytest.mark.asyncio
    async def test_applying_twice_is_idempotent(self) -> None:
        store = InMemoryDraftStore([make_post()])
        engine = DraftMergeEngine()
        suggestion = SuggestedContent(
            post={"title": "X"},
            modules=(ModuleUpdate("hero", None, props={"cta": {"label": "Buy"}}),),
        )

        snapshots = []
        for _ in range(2):
            current = await store.get_post("post-1")
            version = await store.get_version("post-1", "ai-review")
            await store.apply(engine.plan(current, suggestion, tier="ai-review", base_version=version))
            after = await store.get_post("post-1")
            snapshots.append(
                (after.ai_review_draft, [(m.ai_review_props, m.ai_review_overrides) for m in after.modules])
            )
        assert snapshots[0] == snapshots[1]


# -----------------------------------------------------------------------------
# Modules
# -----------------------------------------------------------------------------


class TestModuleMerge:
    """Tests for module targeting and layers."""

    def test_fan_out_to_every_instance_of_type(self) -> None:
        post = make_post()
        update = ModuleUpdate("hero", None, props={"title": "Same"})
        plan = DraftMergeEngine().plan(post, SuggestedContent(modules=(update,)), tier="ai-review")

        writes = _writes_by_module(plan)
        assert set(writes) == {"pm-0", "pm-1", "pm-3"}
        assert {value["title"] for value in writes.values()} == {"Same"}
        assert writes["pm-1"]["cta"] == {"label": "Go", "href": "/b"}
        assert all(write.column == "ai_review_props" for write in plan.module_writes)
        assert plan.applied == ("module.hero",)

    def test_order_index_targets_one_instance(self) -> None:
        post = make_post()
        update = ModuleUpdate("hero", 1, props={"title": "Only one"})
        plan = DraftMergeEngine().plan(post, SuggestedContent(modules=(update,)), tier="ai-review")

        assert set(_writes_by_module(plan)) == {"pm-1"}
        assert plan.applied == ("module.hero[1]",)

    def test_missing_module_is_skipped_not_fatal(self) -> None:
        post = make_post()
        suggestion = SuggestedContent(
            post={"title": "X"},
            modules=(
                ModuleUpdate("carousel", None, props={"speed": 3}),
                ModuleUpdate("hero", 7, props={"title": "Nope"}),
                ModuleUpdate("prose", None, props={"content": "New body"}),
            ),
        )
        plan = DraftMergeEngine().plan(post, suggestion, tier="ai-review")

        assert plan.applied == ("post.title", "module.prose")
        assert [item["type"] for item in plan.skipped] == ["module_not_found", "module_not_found"]
        assert set(_writes_by_module(plan)) == {"pm-2"}

    def test_global_module_writes_overrides_only(self) -> None:
        post = make_post()
        update = ModuleUpdate("footer", None, props={"text": "Post specific"})
        plan = DraftMergeEngine().plan(post, SuggestedContent(modules=(update,)), tier="ai-review")

        (write,) = plan.module_writes
        assert write.column == "ai_review_overrides"
        assert write.layer == "overrides"
        assert write.value == {"text": "Post specific"}

    def test_post_module_overrides_are_kept_separate(self) -> None:
        post = make_post()
        update = ModuleUpdate("prose", 2, props={"content": "Body 2"}, overrides={"theme": "dark"})
        plan = DraftMergeEngine().plan(post, SuggestedContent(modules=(update,)), tier="review")
        columns = {write.column: dict(write.value) for write in plan.module_writes}
        assert columns == {"review_props": {"content": "Body 2"}, "review_overrides": {"theme": "dark"}}

    def test_source_tier_writes_live_columns(self) -> None:
        post = make_post()
        plan = DraftMergeEngine().plan(
            post, SuggestedContent(post={"title": "Live edit"}), tier="source"
        )
        assert plan.post_column == "fields"
        assert plan.post_fields["title"] == "Live edit"

    def test_two_updates_for_same_instance_accumulate(self) -> None:
        post = make_post()
        suggestion = SuggestedContent(
            modules=(
                ModuleUpdate("hero", None, props={"title": "All"}),
                ModuleUpdate("hero", 0, props={"cta": {"label": "First only"}}),
            )
        )
        writes = _writes_by_module(DraftMergeEngine().plan(post, suggestion, tier="ai-review"))
        assert writes["pm-0"]["title"] == "All"
        assert writes["pm-0"]["cta"] == {"label": "First only", "href": "/a"}
        assert writes["pm-3"]["cta"]["label"] == "Go"

    def test_empty_suggestion_is_empty_plan(self) -> None:
        plan = DraftMergeEngine().plan(PostRecord(id="p"), SuggestedContent(), tier="ai-review")
        assert plan.is_empty
        assert plan.applied == ()


class TestNormalization:
    """Tests for rich-text and reference normalization."""

    def test_markdown_becomes_richtext(self, registry) -> None:
        post = make_post()
        update = ModuleUpdate("prose", None, props={"content": "# Title\n\nHello **world**"})
        plan = DraftMergeEngine(registry).plan(post, SuggestedContent(modules=(update,)), tier="ai-review")

        content = plan.module_writes[0].value["content"]
        children = content["root"]["children"]
        assert [child["type"] for child in children] == ["paragraph"]
        assert children[0]["children"][1] == {
            "type": "text",
            "text": "world",
            "detail": 0,
            "format": 1,
            "mode": "normal",
            "style": "",
            "version": 1,
        }

    def test_structured_strings_are_left_alone(self, registry) -> None:
        engine = DraftMergeEngine(registry)
        raw = '{"root": {"children": []}}'
        assert engine.normalize_module_props("prose", {"content": raw}) == {"content": raw}

    def test_reference_field_is_flattened(self, registry) -> None:
        engine = DraftMergeEngine(registry)
        assert engine.normalize_module_props("hero", {"image": {"id": 17}, "title": {"id": 1}}) == {
            "image": "17",
            "title": {"id": 1},
        }

    def test_unknown_module_type_is_untouched(self, registry) -> None:
        engine = DraftMergeEngine(registry)
        assert engine.normalize_module_props("banner", {"content": "# Hi"}) == {"content": "# Hi"}
