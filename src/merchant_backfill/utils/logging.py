"""
utils/logging.py — structlog configuration for the backfill.

Sets up structured logging with JSON or human-readable console output.
Call configure_logging() once at process startup (done by the CLI).

Usage:
    from merchant_backfill.utils.logging import configure_logging, get_logger

    configure_logging("INFO", "json")
    log = get_logger("merchant_backfill.loaders.merchant_gateway")
    log.info("branch_count_updated", retailer_id=42, branch_count=7)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog for the backfill process.

    Should be called once at startup. Idempotent.

    Args:
        log_level:  "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
        log_format: "json" | "console".
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Standard library logging integration (SQLAlchemy logs through it)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_values: Any) -> Any:
    """
    Return a lazy structlog logger that tags every event with *name*.

    Binding happens on first use, so module-level loggers pick up whatever
    configure_logging() installs later.

    Args:
        name:             Logger name (conventionally the module __name__).
        **initial_values: Key-value pairs merged into every log record.
    """
    return structlog.get_logger(name, logger=name, **initial_values)
