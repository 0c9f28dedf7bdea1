"""Service layer helpers (settings, secret redaction)."""

from .settings import Settings, SettingsStore, load_settings, redact_mapping, redact_secret

__all__ = ["Settings", "SettingsStore", "load_settings", "redact_secret", "redact_mapping"]
