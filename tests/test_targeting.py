"""Tests for field-scope targeting helpers."""

from __future__ import annotations

import pytest

from agentdraft.ai.orchestration.errors import ModuleTargetError
from agentdraft.ai.orchestration.types import ModuleUpdate, ToolCall, ToolCallResult
from agentdraft.drafts.store import ModuleRecord
from agentdraft.drafts.targeting import (
    FieldTarget,
    decode_field_key,
    inject_field_target,
    match_modules,
    place_field_media,
    resolve_field_target,
)

from tests.helpers import make_post


def _image(media_id: str, **extra) -> ToolCallResult:
    return ToolCallResult.from_success(ToolCall("generate_image", {}), {"mediaId": media_id, **extra})


class TestDecodeFieldKey:
    @pytest.mark.parametrize(
        "key, expected",
        [
            ("post.title", FieldTarget("post", ("title",))),
            ("excerpt", FieldTarget("post", ("excerpt",))),
            ("module.hero.image", FieldTarget("module", ("image",), "hero")),
            ("module.gallery.items.0.src", FieldTarget("module", ("items", "0", "src"), "gallery")),
        ],
    )
    def test_valid_keys(self, key, expected) -> None:
        assert decode_field_key(key) == expected

    @pytest.mark.parametrize("key", [None, "", "module.hero", "post"])
    def test_invalid_keys(self, key) -> None:
        assert decode_field_key(key) is None


class TestResolveFieldTarget:
    def test_module_instance_id_pins_order_index(self) -> None:
        post = make_post()
        target = resolve_field_target("module.hero.title", {"moduleInstanceId": "mi-3"}, post.modules)
        assert target.order_index == 3

    def test_post_module_id_pins_order_index(self) -> None:
        post = make_post()
        target = resolve_field_target("module.hero.title", {"postModuleId": "pm-1"}, post.modules)
        assert target.order_index == 1

    def test_single_instance_is_pinned_without_ids(self) -> None:
        post = make_post()
        target = resolve_field_target("module.prose.content", {}, post.modules)
        assert target.order_index == 2

    def test_ambiguous_type_stays_unpinned(self) -> None:
        post = make_post()
        target = resolve_field_target("module.hero.title", {}, post.modules)
        assert target.order_index is None


class TestInjectFieldTarget:
    def test_missing_type_and_index_are_injected(self) -> None:
        target = FieldTarget("module", ("title",), "hero", 1)
        payload = {"modules": [{"props": {"title": "New"}}]}
        assert inject_field_target(payload, target) == {
            "modules": [{"props": {"title": "New"}, "type": "hero", "orderIndex": 1}]
        }

    def test_explicit_index_wins(self) -> None:
        target = FieldTarget("module", ("title",), "hero", 1)
        payload = {"modules": [{"type": "hero", "orderIndex": 0, "props": {}}]}
        assert inject_field_target(payload, target)["modules"][0]["orderIndex"] == 0

    def test_post_targets_are_untouched(self) -> None:
        payload = {"post": {"title": "X"}}
        assert inject_field_target(payload, FieldTarget("post", ("title",))) == payload


class TestMatchModules:
    def test_no_match_raises(self) -> None:
        with pytest.raises(ModuleTargetError) as excinfo:
            match_modules(make_post().modules, ModuleUpdate("hero", 2))
        assert excinfo.value.order_index == 2

    def test_fan_out_sorted_by_position(self) -> None:
        modules = [
            ModuleRecord("b", "b", "hero", 5),
            ModuleRecord("a", "a", "hero", 1),
        ]
        assert [m.post_module_id for m in match_modules(modules, ModuleUpdate("hero"))] == ["a", "b"]


class TestPlaceFieldMedia:
    """Tests for placing generated media at the edited path."""

    def test_module_path_with_alt_sibling(self) -> None:
        target = FieldTarget("module", ("image",), "hero", 0)
        placed = place_field_media({}, target, [_image("m1", altText="A cat")])
        assert placed == {"modules": [{"type": "hero", "props": {"image": "m1", "alt": "A cat"}, "orderIndex": 0}]}

    def test_model_alt_is_not_overwritten(self) -> None:
        target = FieldTarget("module", ("image",), "hero", 0)
        payload = {"modules": [{"type": "hero", "orderIndex": 0, "props": {"alt": "Mine"}}]}
        placed = place_field_media(payload, target, [_image("m1", altText="Generated")])
        assert placed["modules"][0]["props"] == {"alt": "Mine", "image": "m1"}

    def test_nested_array_element_keeps_siblings(self) -> None:
        target = FieldTarget("module", ("items", "1", "src"), "gallery", 0)
        base = {"items": [{"src": "a", "alt": "first"}, {"src": "b", "alt": "second"}]}
        placed = place_field_media({}, target, [_image("m2", description="New")], base_props=base)
        items = placed["modules"][0]["props"]["items"]
        assert items[0] == {"src": "a", "alt": "first"}
        assert items[1] == {"src": "m2", "alt": "second", "description": "New"}

    def test_post_field(self) -> None:
        placed = place_field_media({"post": {"title": "T"}}, FieldTarget("post", ("featuredImageId",)), [_image("m5")])
        assert placed["post"] == {"title": "T", "featuredImageId": "m5"}

    def test_without_successful_generation_payload_is_unchanged(self) -> None:
        failed = ToolCallResult.from_error(ToolCall("generate_image", {}), "boom")
        payload = {"post": {"title": "T"}}
        assert place_field_media(payload, FieldTarget("post", ("featuredImageId",)), [failed]) == payload
