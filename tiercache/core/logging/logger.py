#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the cache engine with:
- JSON formatting for log aggregation
- Console rendering for local development
- A single helper for cache operation events so every tier reports the
  same fields: operation, status, source, key, message

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation (ELK, Splunk, etc.)
"""

import logging
import sys
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from tiercache.core.config.settings import LoggingSettings


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.1: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the log level.

    STAGE-L.2: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    settings: LoggingSettings | None = None,
) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        settings: Logging settings used for any argument not given
    """
    settings = settings or LoggingSettings()

    log_level = log_level or settings.LOG_LEVEL
    log_format = log_format or settings.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value")
    """
    return structlog.get_logger(name)


def log_operation(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    status: str,
    source: str,
    key: str,
    message: str | None = None,
    level: str = "info",
    **kwargs,
) -> None:
    """
    Log a cache operation event.

    Args:
        logger: Logger instance
        operation: GET, SET, UPDATE_TAGS, DELETE, LIST_KEYS, CONNECTION
        status: HIT, MISS, ERROR, EXPIRED, ...
        source: MEMORY, REDIS, NEW, NONE
        key: Logical cache key (or joined tags for UPDATE_TAGS)
        message: Optional human-readable detail
        level: Log level (debug, info, warning, error, critical)
        **kwargs: Additional fields to log

    Usage:
        log_operation(logger, "GET", "HIT", "MEMORY", "/blog/1")
    """
    fields = {"operation": operation, "status": status, "source": source, "key": key, **kwargs}
    if message is not None:
        fields["message"] = message
    log_func = getattr(logger, level.lower())
    log_func(f"cache {operation.lower()} {status.lower()}", **fields)
