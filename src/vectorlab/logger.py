"""Structured logging configuration for the index runtime."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def _resolve_level(level: str) -> int:
    """Map a level name such as ``"debug"`` to its ``logging`` constant."""
    return getattr(logging, level.upper(), logging.INFO)


def configure(level: str = "INFO", json_out: bool = True) -> structlog.BoundLogger:
    """Configure structlog for the index runtime and return a bound logger.

    JSON output carries exceptions as structured tracebacks; console output
    renders them inline.
    """
    numeric_level = _resolve_level(level)
    logging.basicConfig(level=numeric_level, stream=sys.stderr, force=True)
    renderer: list[Any] = (
        [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
        if json_out
        else [structlog.dev.ConsoleRenderer()]
    )
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        *renderer,
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        context_class=dict,
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger("vectorlab")


def bind_index(persist_location: str | None) -> None:
    """Attach the index location to every log line emitted in this context."""
    structlog.contextvars.bind_contextvars(index=persist_location or "<memory>")
