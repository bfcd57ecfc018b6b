"""
Structured logging utilities for livestore.

The record store logs its lifecycle at INFO and every write at DEBUG; live
queries log each re-evaluation at DEBUG, which is by far the noisiest source, so
its level can be set on its own. Standard library logging is used throughout,
with a human-readable formatter by default and a JSON formatter that carries the
``extra=`` fields (record ids, kinds, counts) as top-level keys.

Usage:
    from livestore.utils.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", loggers={"livestore.query": "INFO"})
    log = get_logger(__name__)
    log.info("Record store opened", extra={"backend": "sqlite", "records": 12})
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

if TYPE_CHECKING:
    from livestore.config import Settings

QUERY_LOGGER = "livestore.query"

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as one JSON line, promoting ``extra=`` fields."""
    payload: Dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key not in _RESERVED_ATTRS and not key.startswith("_"):
            payload[key] = value
    # Older call sites pass a nested dict as extra={"extra": {...}}.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        payload.update(nested)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    # UUIDs and datetimes from record fields are rendered with str().
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """JSON-lines formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
    loggers: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Root logging level name (e.g., "DEBUG", "INFO", "WARNING").
    json_logs : bool
        Whether to emit logs as JSON lines. If False, uses a concise human formatter.
    force : bool
        Replace an existing configuration. With False, a root logger that already
        has handlers (e.g. set up by an embedding application) is left alone.
    loggers : mapping of str to str | None
        Per-logger level overrides, e.g. ``{"livestore.query": "WARNING"}``.
    """
    if not force and logging.getLogger().handlers:
        return

    formatter_name = "json" if json_logs else "console"
    level = level.upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter_name,
                    "stream": "ext://sys.stderr",
                }
            },
            "loggers": {
                name: {"level": logger_level.upper()}
                for name, logger_level in (loggers or {}).items()
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def configure_from_settings(settings: "Settings") -> None:
    """Apply ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_QUERY_LEVEL`` from settings."""
    overrides = {QUERY_LOGGER: settings.log_query_level} if settings.log_query_level else None
    configure_logging(level=settings.log_level, json_logs=settings.log_json, loggers=overrides)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with the given name. If name is None, returns the root logger.
    """
    return logging.getLogger(name)


__all__ = [
    "QUERY_LOGGER",
    "JsonFormatter",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
]
