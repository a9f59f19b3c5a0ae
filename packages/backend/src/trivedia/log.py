"""structlog configuration.

Console rendering in development, JSON lines everywhere else. The
request_id bound by RequestIdMiddleware is merged from contextvars
into every event.
"""

import logging
import sys
from typing import Any

import structlog

from trivedia.config import settings


def configure_logging() -> None:
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.is_development:
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        # Left uncached so structlog.testing.capture_logs can intercept.
        cache_logger_on_first_use=False,
    )
