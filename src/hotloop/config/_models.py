"""Configuration models.

This module provides the Pydantic models for hotloop configuration:
- ReloadMode: Which update strategy a trigger uses
- LogLevel / LogFormat: Logging enums
- LoggingConfig: Logging section
- ReloadConfig: Immutable supervisor configuration
"""

from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._defaults import (
    DEFAULT_DEBOUNCE,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_WATCH_EXTENSIONS,
    DEFAULT_WATCH_PATHS,
)


class ReloadMode(StrEnum):
    """Update strategy used when a change is detected.

    - AUTO: Live patch first, full restart when the patch is impossible or fails
    - RELOAD: Live patch only, failures are reported and the child keeps running
    - RESTART: Always restart the child process
    """

    AUTO = "auto"
    RELOAD = "reload"
    RESTART = "restart"


class LogLevel(StrEnum):
    """Log level threshold values.

    Values are ordered from most verbose (debug) to least verbose (error).
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.WARNING
    format: LogFormat = LogFormat.TEXT
    file: str = ""


class ReloadConfig(BaseModel):
    """Immutable configuration for a supervision session.

    Attributes:
        watch_paths: Root directories to watch, in order.
        watch_extensions: A changed file must end with one of these.
        ignore_patterns: Root-relative patterns that suppress a change.
        debounce: Quiet period in seconds before a burst of changes fires.
        verbose: Report filtering decisions and diagnostics.
        mode: Update strategy applied to triggers.
        runtime_port: Port for the child's runtime service (0 picks one).
        startup_timeout: Seconds to wait for a new child to announce itself.
        shutdown_timeout: Seconds to wait for graceful child termination.
        reload_timeout: Seconds to wait for a live-patch round trip.
        connect_timeout: Seconds to wait when connecting to the runtime service.
        logging: Logging settings.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    watch_paths: tuple[str, ...] = DEFAULT_WATCH_PATHS
    watch_extensions: tuple[str, ...] = DEFAULT_WATCH_EXTENSIONS
    ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    debounce: float = Field(default=DEFAULT_DEBOUNCE, gt=0)
    verbose: bool = False
    mode: ReloadMode = ReloadMode.AUTO
    runtime_port: int = Field(default=0, ge=0, le=65535)
    startup_timeout: float = Field(default=1.0, gt=0)
    shutdown_timeout: float = Field(default=2.0, gt=0)
    reload_timeout: float = Field(default=10.0, gt=0)
    connect_timeout: float = Field(default=2.0, gt=0)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("watch_paths")
    @classmethod
    def _require_watch_path(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            msg = "at least one watch path is required"
            raise ValueError(msg)
        return value

    @field_validator("watch_extensions")
    @classmethod
    def _normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        # "py" and ".py" both mean the same extension
        return tuple(ext if ext.startswith(".") else f".{ext}" for ext in value)
