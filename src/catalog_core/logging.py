"""Structlog-based logging for the catalog core.

Library code logs through structlog only; the CLI renders with rich.
"""
from __future__ import annotations

from typing import Literal

import logging
import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO", *, json: bool = True) -> None:
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "catalog_core"):
    return structlog.get_logger(name)


def bind_request(**context: object) -> None:
    """Attach request-scoped context (actor, kind, item id) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)


# Initialize default config
configure_logging()
