"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agentdraft.services.settings import (
    Settings,
    SettingsStore,
    load_settings,
    redact_mapping,
    redact_secret,
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AGENTDRAFT_MAX_TURNS",
        "AGENTDRAFT_AGENT_DEBUG",
        "AGENTDRAFT_DEFAULT_MODEL",
        "AGENTDRAFT_REQUEST_TIMEOUT",
        "AGENTDRAFT_REVISIONS_LIMIT",
        "AGENTDRAFT_LOG_LEVEL",
        "AGENTDRAFT_LOG_DIR",
        "AGENTDRAFT_LOG_CONSOLE",
        "AGENTDRAFT_DEVELOPMENT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings == Settings()
    assert settings.max_turns == 10
    assert settings.revision_limit == 20


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(max_turns=6, debug=True, default_model="gpt-test", base_url="https://proxy/v1")

    SettingsStore(path).save(original)

    assert json.loads(path.read_text(encoding="utf-8"))["version"] == 1
    assert SettingsStore(path).load() == original


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"max_turns": 4, "theme": "dark"}), encoding="utf-8")

    assert SettingsStore(path).load().max_turns == 4


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTDRAFT_MAX_TURNS", "3")
    monkeypatch.setenv("AGENTDRAFT_AGENT_DEBUG", "true")
    monkeypatch.setenv("AGENTDRAFT_DEFAULT_MODEL", "gpt-env")
    monkeypatch.setenv("AGENTDRAFT_REQUEST_TIMEOUT", "12.5")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.max_turns == 3
    assert settings.debug is True
    assert settings.default_model == "gpt-env"
    assert settings.request_timeout == 12.5


def test_invalid_integer_override_is_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTDRAFT_REVISIONS_LIMIT", "lots")

    assert SettingsStore(tmp_path / "settings.json").load().revision_limit == 20


def test_runtime_overrides_and_clamping(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "settings.json", max_turns=0, revision_limit=-5)

    assert settings.max_turns == 1
    assert settings.revision_limit == 0


def test_redact_secret() -> None:
    assert redact_secret("sk-test-secret") == "sk**********et"
    assert redact_secret("abc") == "***"
    assert redact_secret("") == ""


def test_redact_mapping_masks_nested_keys() -> None:
    payload = {"provider": "openai", "llm": {"api_key": "sk-test-secret", "model": "gpt"}}

    assert redact_mapping(payload) == {
        "provider": "openai",
        "llm": {"api_key": "sk**********et", "model": "gpt"},
    }
