"""Logging utilities for hotloop.

This module provides standalone structlog logger factories that write
JSON-formatted or text-formatted logs to stderr or a log file. Each logger
is self-contained and does not modify global structlog configuration, so a
supervised program that configures structlog itself is left alone.
"""

import logging
import sys
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LogFormatType = Literal["json", "text"]


def _get_log_level() -> int:
    """Get the log level from environment variables.

    Checks HOTLOOP_DEBUG first (sets DEBUG if present), then
    HOTLOOP_LOG_LEVEL. Defaults to WARNING if neither is set.

    Returns:
        The logging level as an integer.
    """
    if getenv("HOTLOOP_DEBUG", None):
        return logging.DEBUG

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(
        getenv("HOTLOOP_LOG_LEVEL", "warning").upper(), logging.WARNING
    )


def _log_level_from_string(level: str, *, respect_env: bool = False) -> int:
    """Convert a log level string to a logging level integer.

    Args:
        level: Log level string (debug, info, warning, error).
        respect_env: If True, HOTLOOP_DEBUG overrides to DEBUG level.

    Returns:
        The logging level as an integer.
    """
    if respect_env and getenv("HOTLOOP_DEBUG", None):
        return logging.DEBUG

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(level.upper(), logging.WARNING)


def create_logger(
    *,
    level: str | None = None,
    log_format: LogFormatType = "text",
    log_file: str = "",
    verbose: bool = False,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a standalone structlog logger for the supervisor.

    The log level is determined by (in order of precedence):
    1. HOTLOOP_DEBUG environment variable (if set, enables DEBUG level)
    2. ``verbose`` (enables DEBUG level)
    3. The ``level`` parameter (if provided)
    4. HOTLOOP_LOG_LEVEL environment variable
    5. Default: WARNING

    Args:
        level: Optional log level string (debug, info, warning, error).
        log_format: Output format, either "json" or "text".
        log_file: Path to a log file (opened in append mode). Logs go to
            stderr when empty.
        verbose: Whether verbose output was requested.

    Returns:
        A configured FilteringBoundLogger instance.
    """
    if verbose:
        effective_level = logging.DEBUG
    elif level is not None:
        effective_level = _log_level_from_string(level, respect_env=True)
    else:
        effective_level = _get_log_level()

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger_factory = structlog.WriteLoggerFactory(file=log_path.open("a"))
    else:
        logger_factory = structlog.PrintLoggerFactory(file=sys.stderr)

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Text format: "timestamp [level] event key=value ..."
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    wrapper_class = structlog.make_filtering_bound_logger(effective_level)

    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            logger_factory(),
            processors=processors,
            wrapper_class=wrapper_class,
            context_class=dict,
        ),
    )


def get_default_logger() -> "FilteringBoundLogger":  # noqa: UP037
    """Return a stderr logger honouring only the environment variables.

    Used by components constructed without an explicit logger.
    """
    return create_logger()
