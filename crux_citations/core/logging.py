"""Structured logging setup.

Routes structlog through the stdlib logging module so third-party loggers
(httpx, sqlalchemy, uvicorn) share one output stream and level.
"""

from __future__ import annotations

import logging
import sys

import structlog

from .config import settings


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
        fmt: 'json' for machine-readable output, anything else for console output
            (defaults to settings.LOG_FORMAT)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    fmt = fmt or settings.LOG_FORMAT

    renderer: structlog.types.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
