"""Logging utilities for embedded Cassandra.

This module provides standalone structlog logger factories that write
JSON-formatted or text-formatted logs either to a file or to stderr. Each
logger is self-contained and does not modify global structlog configuration,
so embedding applications keep control of their own logging setup.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LogFormatType = Literal["json", "text"]

DEBUG_ENV_VAR = "EMBEDDED_CASSANDRA_DEBUG"


def _log_level_from_string(level: str, *, respect_env: bool = True) -> int:
    """Convert a log level string to a logging level integer.

    Args:
        level: Log level string (debug, info, warning, error).
        respect_env: If True, EMBEDDED_CASSANDRA_DEBUG overrides to DEBUG level.

    Returns:
        The logging level as an integer.
    """
    if respect_env and getenv(DEBUG_ENV_VAR, None):
        return logging.DEBUG

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(level.upper(), logging.INFO)


def _build_processors(log_format: LogFormatType, *, colors: bool) -> list[structlog.typing.Processor]:
    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "json":
        # Add dict_tracebacks for structured exception logging in JSON
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Text format: "timestamp [level] event key=value ..."
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))
    return processors


def _create_file_logger(
    log_file_path: str,
    *,
    log_level: int,
    log_format: LogFormatType,
    max_bytes: int | None,
    backup_count: int | None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a standalone structlog logger writing to the specified file.

    Args:
        log_file_path: Path to the log file (opened in append mode).
        log_level: Minimum level that is emitted.
        log_format: Output format, either "json" or "text".
        max_bytes: Maximum size in bytes before rotation. Must be set with
            backup_count for rotation to be enabled.
        backup_count: Number of rotated log files to keep. Must be set with
            max_bytes for rotation to be enabled.

    Returns:
        A configured FilteringBoundLogger instance.
    """
    log_path = Path(log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    raw_logger: object
    if max_bytes is not None and backup_count is not None:
        # Use stdlib logging with RotatingFileHandler for proper rotation support
        stdlib_logger = logging.getLogger(f"embedded_cassandra.{log_path.stem}.{id(log_path)}")
        stdlib_logger.handlers.clear()
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(log_level)

        handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        handler.setLevel(log_level)
        # structlog renders the message, the handler only writes it out
        handler.setFormatter(logging.Formatter("%(message)s"))
        stdlib_logger.addHandler(handler)
        raw_logger = stdlib_logger
    else:
        raw_logger = structlog.WriteLoggerFactory(file=log_path.open("a"))()

    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            raw_logger,
            processors=_build_processors(log_format, colors=False),
            wrapper_class=structlog.make_filtering_bound_logger(log_level),
            context_class=dict,
        ),
    )


def create_logger(
    *,
    level: str = "info",
    log_format: LogFormatType = "text",
    log_file: str = "",
    max_bytes: int | None = None,
    backup_count: int | None = None,
    **context: object,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a logger for an orchestration run.

    Writes to ``log_file`` when given, otherwise renders to stderr. The log
    level can be forced to DEBUG with the EMBEDDED_CASSANDRA_DEBUG
    environment variable regardless of ``level``.

    Args:
        level: Log level threshold (debug, info, warning, error).
        log_format: Output format, either "json" or "text".
        log_file: Path to log file; empty logs to stderr.
        max_bytes: Rotate the log file after this many bytes.
        backup_count: Number of rotated log files to keep.
        **context: Key/value pairs bound to every entry (node, version, ...).

    Returns:
        A FilteringBoundLogger instance.
    """
    effective_level = _log_level_from_string(level)

    if log_file:
        logger = _create_file_logger(
            log_file,
            log_level=effective_level,
            log_format=log_format,
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
    else:
        logger = cast(
            "FilteringBoundLogger",
            structlog.wrap_logger(
                structlog.PrintLogger(file=sys.stderr),
                processors=_build_processors(log_format, colors=False),
                wrapper_class=structlog.make_filtering_bound_logger(effective_level),
                context_class=dict,
            ),
        )

    if context:
        return logger.bind(**context)
    return logger
