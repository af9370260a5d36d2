"""Output sink implementations for the supervisor system.

This module provides the console implementation of the OutputSink
protocol used to forward child output and show supervisor status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

if TYPE_CHECKING:
    from ._protocol import StatusLevel


@final
class ConsoleOutputSink:
    """Output sink that writes to the supervisor's own stdout/stderr.

    Child output is forwarded verbatim (no markup or highlighting), stdout
    lines to stdout and stderr lines to stderr. Status messages are
    prefixed with ``[hotloop]`` and color coded by level.
    """

    __slots__ = ("_console", "_error_console", "_level_styles", "_prefix_style")

    def __init__(
        self,
        console: Console | None = None,
        error_console: Console | None = None,
    ) -> None:
        """Initialize the output sink.

        Args:
            console: Console for stdout. If None, creates a new one.
            error_console: Console for stderr. If None, creates a new one.
        """
        self._console = console or Console()
        self._error_console = error_console or Console(stderr=True)
        self._prefix_style = Style(color="blue", bold=True)
        self._level_styles: dict[str, Style] = {
            "info": Style(),
            "success": Style(color="green"),
            "warning": Style(color="yellow"),
            "error": Style(color="red", bold=True),
        }

    async def write_line(
        self,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        """Forward a line of child output.

        Args:
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        console = self._error_console if stream == "stderr" else self._console
        console.print(Text(line), soft_wrap=True, highlight=False)

    async def write_status(self, message: str, level: StatusLevel = "info") -> None:
        """Write a supervisor status message.

        Args:
            message: The message to show.
            level: Severity used for styling.
        """
        text = Text()
        _ = text.append("[hotloop]", style=self._prefix_style)
        _ = text.append(" ")
        _ = text.append(message, style=self._level_styles.get(level, Style()))
        console = self._error_console if level == "error" else self._console
        console.print(text, soft_wrap=True, highlight=False)
