"""
Structured logging setup (structlog)

Call configure_logging() once at process start (scripts do this in main()).
Library modules only ever do `logger = structlog.get_logger()`.
Log lines go to stderr; stdout is left to script output (exports, results).
"""
import logging
import sys
from typing import Optional

import structlog

from smartshot.common.config import get_settings


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure structlog processors and level filtering.

    Args:
        level: Log level name (defaults to LOG_LEVEL setting)
        json_output: Render JSON lines instead of console output (defaults to LOG_JSON)
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json_output is None else json_output

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
