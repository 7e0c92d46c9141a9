"""
Structured JSON logging for rhythm-schema.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- An optional domain field ("songs", "instruments", ...)

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from rhythm_schema.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("migration.session")
    >>> logger.info("Stored state loaded", extra={"context": {"records": 8}})

Note:
    Only stderr is used. stdout is reserved for CLI output so that
    `--format json` stays machine-readable.
"""

import json
import logging
import sys
from typing import Any

from rhythm_schema.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each log record as a single JSON object.

    Fields:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level name
    - component: Logger name
    - message: Human-readable log message
    - context: Structured data passed via extra={"context": {...}}
    - domain: Data domain passed via extra={"domain": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "domain"):
            log_entry["domain"] = record.domain

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Replaces any handlers on the root logger with a single stderr handler
    using JSONFormatter.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Prevents duplicate lines when called more than once
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(JSONFormatter())

    root_logger.addHandler(handler)


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger instance for a specific component.

    Args:
        component: Component name (e.g., "storage.db", "migration.detector")

    Returns:
        Logger sharing the configuration set by setup_logging()
    """
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    domain: str | None = None,
) -> None:
    """
    Log a message with structured context and an optional domain.

    Equivalent to logger.log(level, message, extra={"context": ..., "domain": ...}).

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        domain: Optional data domain the message refers to

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.WARNING,
        ...     "Stored version below floor, resetting to defaults",
        ...     context={"stored_version": "1.0.0", "floor_version": "2.0.0"},
        ...     domain="songs",
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if domain is not None:
        extra["domain"] = domain

    logger.log(level, message, extra=extra if extra else None)
