"""hotloop exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class HotloopError(Exception):
    """Base exception for hotloop errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(HotloopError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        """Initialize with error message and optional file context."""
        super().__init__(message)
        self.path: Path | None = path


class ConfigValidationError(ConfigError):
    """Raised when configuration fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected


class WatchPathError(ConfigError):
    """Raised when none of the configured watch paths exist.

    Attributes:
        paths: The watch paths that were checked.
    """

    def __init__(self, message: str, *, paths: Sequence[str] = ()) -> None:
        """Initialize with error message and the paths that were checked.

        Args:
            message: Human-readable error message.
            paths: The configured watch paths.
        """
        super().__init__(message)
        self.paths: tuple[str, ...] = tuple(paths)


# =============================================================================
# Supervisor Exceptions
# =============================================================================


class SupervisorError(HotloopError):
    """Base exception for supervisor errors."""


class ChildStartError(SupervisorError):
    """Raised when the supervised child process fails to start.

    Attributes:
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        """Initialize with error message and cause.

        Args:
            message: Human-readable error message.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.cause: Exception | None = cause


class ChildStopError(SupervisorError):
    """Raised when signalling the child process fails at the OS level.

    Attributes:
        pid: Process ID of the child, if known.
        cause: The underlying exception that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        pid: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and process context.

        Args:
            message: Human-readable error message.
            pid: Process ID of the child, if known.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.pid: int | None = pid
        self.cause: Exception | None = cause


class RuntimeServiceError(HotloopError):
    """Raised when the live-patch runtime service protocol fails.

    Attributes:
        address: The runtime service address, if known.
    """

    def __init__(self, message: str, *, address: str | None = None) -> None:
        """Initialize with error message and service address."""
        super().__init__(message)
        self.address: str | None = address


class TargetError(HotloopError):
    """Raised when a ``module:attr`` program target cannot be resolved.

    Attributes:
        target: The ``module:attr`` target that failed to resolve.
    """

    def __init__(self, message: str, *, target: str) -> None:
        """Initialize with error message and target context."""
        super().__init__(message)
        self.target: str = target


class ModuleReloadError(RuntimeServiceError):
    """Raised inside the child when changed modules cannot be re-imported.

    Attributes:
        module: Name of the module that failed, if any.
    """

    def __init__(self, message: str, *, module: str | None = None) -> None:
        """Initialize with error message and module context."""
        super().__init__(message)
        self.module: str | None = module
