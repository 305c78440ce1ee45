"""Structured logging setup."""

from __future__ import annotations

import logging
import sys

import structlog

from dejackpot.config import LogConfig


def configure_logging(config: LogConfig) -> None:
    """Configure structlog and route stdlib loggers (sqlalchemy, httpx) to stderr."""
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(stream=sys.stderr, level=level, format="%(message)s")
    # httpx logs every request URL at INFO, and Telegram URLs carry the bot token
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if config.json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
