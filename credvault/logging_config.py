"""Structured logging configuration for credvault.

The CLI passes its validated :class:`~credvault.config.Settings`; without
settings the environment is read directly:
    CREDVAULT_LOG_FORMAT  -- ``json`` for structured JSON, ``text`` for human-readable (default).
    CREDVAULT_LOG_LEVEL   -- Python log level name (default: ``INFO``).

JSON lines carry the lifecycle fields (operation, state, storage_handle, did)
plus ``component``, the logger name below ``credvault.``.
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from credvault.config import Settings

STRUCTURED_FIELDS = ("operation", "state", "storage_handle", "did")
_ROOT_LOGGER = "credvault"


def _log_format(settings: Settings | None) -> str:
    if settings is not None:
        return settings.log_format
    return os.environ.get("CREDVAULT_LOG_FORMAT", "text").lower()


def _log_level(settings: Settings | None) -> int:
    """Numeric level from settings or CREDVAULT_LOG_LEVEL; unknown names mean INFO."""
    if settings is not None:
        name = settings.log_level
    else:
        name = os.environ.get("CREDVAULT_LOG_LEVEL", "INFO")
    numeric = getattr(logging, name.upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


def component_of(logger_name: str) -> str:
    """``credvault.storage.ipfs`` -> ``storage.ipfs``; foreign loggers keep their name."""
    if logger_name.startswith(_ROOT_LOGGER + "."):
        return logger_name[len(_ROOT_LOGGER) + 1:]
    return logger_name


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per log line, built with ``pythonjsonlogger``.

    Lifecycle extras are copied only when set, so a record logged outside an
    operation has no ``operation`` or ``state`` keys at all.
    """

    def __init__(self) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras: dict[str, Any] = {"component": component_of(record.name)}
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


def setup_logging(settings: Settings | None = None) -> None:
    """Install a single stderr handler on the root logger."""
    level = _log_level(settings)
    root = logging.getLogger()
    root.setLevel(level)

    # Replace, never stack, handlers; the CLI may be invoked repeatedly in one process.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _log_format(settings) == "json":
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root.addHandler(handler)
