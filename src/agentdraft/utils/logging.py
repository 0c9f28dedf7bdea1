"""Logging configuration for hosts embedding the suggestion engine.

Library modules only ever call ``logging.getLogger(__name__)``. Handlers are
installed once by the host, normally through :func:`configure_logging` with the
loaded :class:`~agentdraft.services.settings.Settings`, so ``log_level``,
``log_dir`` and ``log_console`` (and their ``AGENTDRAFT_*`` environment
overrides) decide where engine output goes.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from ..services.settings import Settings

__all__ = ["configure_logging", "setup_logging", "resolve_level", "get_log_path"]

LOG_FILE_NAME = "agentdraft.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_DEFAULT_LOG_DIR = Path.home() / ".agentdraft" / "logs"

# Transport and parser libraries log every request/token at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai", "markdown_it")

_state: dict[str, Path | None] = {"log_path": None}


def resolve_level(level: int | str | None, *, debug: bool = False) -> int:
    """Return a numeric level; ``debug`` forces DEBUG, unknown names mean INFO."""

    if debug:
        return logging.DEBUG
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName((level or "INFO").strip().upper())
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(settings: Settings, *, force: bool = False) -> Path:
    """Install handlers according to ``settings`` and return the log file path."""

    level = resolve_level(settings.log_level, debug=settings.debug)
    log_path = setup_logging(
        level,
        log_dir=settings.log_dir,
        console=settings.log_console,
        force=force,
    )
    logging.getLogger(__name__).debug(
        "Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path
    )
    return log_path


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach a rotating file handler (plus an optional console one) to the root logger.

    A second call is a no-op returning the current path unless ``force`` is set.
    """

    current = _state["log_path"]
    if current is not None and not force:
        return current

    numeric = resolve_level(level)
    directory = Path(log_dir or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    handlers = _build_handlers(log_path, numeric, console, max_bytes, backup_count)
    logging.basicConfig(level=numeric, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    _state["log_path"] = log_path
    return log_path


def get_log_path() -> Path | None:
    return _state["log_path"]


def _build_handlers(
    log_path: Path,
    level: int,
    console: bool,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers
