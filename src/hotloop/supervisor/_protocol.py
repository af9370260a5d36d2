"""Protocol definitions for the supervisor system.

This module defines the interfaces that decouple the orchestrator from
concrete output, live-patch and terminal implementations:
- OutputSink: Consumes forwarded child output and status messages
- ReloadCapability: The opaque live-patch capability
- CommandStrategy: Terminal input strategy (raw or line mode)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ._models import Command, ReloadResult

StatusLevel = Literal["info", "success", "warning", "error"]


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for consuming child output and supervisor status.

    Implementations must handle:
    - Child output lines (stdout/stderr), forwarded verbatim
    - Human-readable status messages from the supervisor
    """

    async def write_line(
        self,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        """Write a line of child output.

        Args:
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        ...

    async def write_status(self, message: str, level: StatusLevel = "info") -> None:
        """Write a supervisor status message.

        Args:
            message: The message to show.
            level: Severity used for styling.
        """
        ...


@runtime_checkable
class ReloadCapability(Protocol):
    """The live-patch capability of a running child.

    Exactly one operation. Callers branch on ``ReloadResult.success`` only;
    any other field is diagnostic.
    """

    async def reload(self) -> ReloadResult:
        """Ask the running execution context to reload its code."""
        ...


@runtime_checkable
class CommandStrategy(Protocol):
    """Terminal input strategy negotiated at dispatcher start."""

    @property
    def name(self) -> str:
        """Return a short name for logging ("raw" or "line")."""
        ...

    def enter(self) -> None:
        """Prepare the terminal. Raises OSError when unsupported."""
        ...

    def restore(self) -> None:
        """Restore the terminal to its original settings."""
        ...

    async def run(self, dispatch: Callable[[Command], Awaitable[None]]) -> None:
        """Read input until EOF or cancellation, dispatching commands."""
        ...
