"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "Settings",
    "SettingsStore",
    "load_settings",
    "redact_secret",
    "redact_mapping",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".agentdraft"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTDRAFT_BASE_URL": "base_url",
    "AGENTDRAFT_DEFAULT_PROVIDER": "default_provider",
    "AGENTDRAFT_DEFAULT_MODEL": "default_model",
    "AGENTDRAFT_LOG_LEVEL": "log_level",
    "AGENTDRAFT_LOG_DIR": "log_dir",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTDRAFT_AGENT_DEBUG": "debug",
    "AGENTDRAFT_REVISIONS_AUTO_PRUNE": "revision_auto_prune",
    "AGENTDRAFT_LOG_CONSOLE": "log_console",
    "AGENTDRAFT_DEVELOPMENT": "development",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTDRAFT_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTDRAFT_MAX_TURNS": "max_turns",
    "AGENTDRAFT_REVISIONS_LIMIT": "revision_limit",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_SECRET_KEYS = {"api_key", "apikey", "apiKey", "secret", "token", "password"}


@dataclass(slots=True)
class Settings:
    """Engine-wide settings shared by every execution session."""

    max_turns: int = 10
    debug: bool = False
    revision_limit: int = 20
    revision_auto_prune: bool = True
    default_temperature: float = 0.7
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    base_url: str | None = None
    default_provider: str | None = None
    default_model: str | None = None
    log_level: str = "INFO"
    log_dir: str | None = None
    log_console: bool = True
    development: bool = False

    def clamp(self) -> Settings:
        """Clamp values into safe operating ranges and return ``self``."""

        self.max_turns = max(1, int(self.max_turns or 1))
        self.revision_limit = max(0, int(self.revision_limit or 0))
        self.max_retries = max(1, int(self.max_retries or 1))
        self.retry_min_seconds = max(0.0, float(self.retry_min_seconds))
        self.retry_max_seconds = max(self.retry_min_seconds, float(self.retry_max_seconds))
        return self


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying runtime/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s: %s", self._path, sorted(data))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")

        settings = self._apply_env_overrides(settings)
        return settings.clamp()

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        data = asdict(settings)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def load_settings(path: Path | str | None = None, **overrides: Any) -> Settings:
    """Convenience wrapper returning settings from ``path`` (or the default location)."""

    store = SettingsStore(Path(path) if path is not None else None)
    return store.load(overrides=overrides or None)


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redact_mapping(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a shallow copy of ``payload`` with secret-looking values masked."""

    if not isinstance(payload, Mapping):
        return {}
    redacted: dict[str, Any] = {}
    for key, value in payload.items():
        if key in _SECRET_KEYS and isinstance(value, str):
            redacted[key] = redact_secret(value)
        elif isinstance(value, Mapping):
            redacted[key] = redact_mapping(value)
        else:
            redacted[key] = value
    return redacted
