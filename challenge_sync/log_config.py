"""Structured logging configuration using structlog.

Call setup_logging() once at process startup (API, worker, CLI) before any
log calls.
"""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from .config import get_settings


def setup_logging(
    *, json_output: Optional[bool] = None, log_level: Optional[str] = None
) -> None:
    """Configure structlog for the application.

    Args:
        json_output: Render logs as JSON; defaults to ``LOG_FORMAT == "json"``.
        log_level: Minimum level to emit; defaults to ``LOG_LEVEL``.
    """
    settings = get_settings()
    if json_output is None:
        json_output = settings.log_format.lower() == "json"
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
