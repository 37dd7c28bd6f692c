"""Structlog configuration helpers for structured logging."""

from __future__ import annotations

import logging
import os

import structlog

LOG_LEVEL = logging.INFO


def resolve_log_level(level: int | str | None = None) -> int:
    """Return a numeric level from *level* or the ``LOG_LEVEL`` environment variable."""

    if level is None:
        level = os.environ.get("LOG_LEVEL", "")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else LOG_LEVEL


def configure_logging(level: int | str | None = None) -> None:
    """Configure structlog to emit JSON-formatted logs through stdlib logging."""

    timestamper = structlog.processors.TimeStamper(fmt="iso")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=resolve_log_level(level))
