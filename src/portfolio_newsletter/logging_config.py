# ABOUTME: structlog configuration shared by the CLI and the web app.
# ABOUTME: Renders console output in development and JSON lines in production.

import logging

import structlog

from portfolio_newsletter.config import get_settings


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog once for the process.

    Args:
        level: Log level name; defaults to LOG_LEVEL.
        fmt: "console" or "json"; defaults to LOG_FORMAT.
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    min_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if (fmt or settings.log_format) == "json":
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        cache_logger_on_first_use=True,
    )
