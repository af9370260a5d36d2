"""Interactive command dispatch.

This module owns the controlling terminal. A strategy is negotiated at
start: raw mode (single keystrokes, no echo, Ctrl+C arrives as a byte) when
stdin is a terminal that supports it, line mode otherwise. SIGINT and
SIGTERM are routed to the same quit callback as the keyboard, so every
shutdown shares one path.
"""

from __future__ import annotations

import contextlib
import os
import signal
import sys
from typing import TYPE_CHECKING, TextIO, final

import anyio
import anyio.abc
import anyio.to_thread

from hotloop.utils import get_default_logger

from ._models import Command

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from structlog.typing import FilteringBoundLogger

    from ._protocol import CommandStrategy

    CommandCallback = Callable[[], Awaitable[None]]
    QuitCallback = Callable[[str], Awaitable[None]]
    Dispatch = Callable[[Command], Awaitable[None]]

IS_WINDOWS = sys.platform == "win32"

INTERRUPT_CHAR = "\x03"
"""ETX, what Ctrl+C produces when the terminal does not turn it into SIGINT."""

_KEY_COMMANDS: dict[str, Command] = {
    "r": Command.RELOAD,
    "R": Command.RESTART,
    "q": Command.QUIT,
    "Q": Command.QUIT,
    INTERRUPT_CHAR: Command.INTERRUPT,
}

_QUIT_WORDS: frozenset[str] = frozenset({"q", "quit", "exit"})

_READ_SIZE = 1024


def parse_key(char: str) -> Command | None:
    """Map a single keystroke to a command."""
    return _KEY_COMMANDS.get(char)


def parse_line(line: str) -> Command | None:
    """Map a line of input to a command.

    ``r`` reloads and ``R`` restarts (case matters); ``q``, ``quit`` and
    ``exit`` quit in any case.
    """
    command = line.strip()
    if command == "r":
        return Command.RELOAD
    if command == "R":
        return Command.RESTART
    if command.lower() in _QUIT_WORDS:
        return Command.QUIT
    return None


@final
class RawModeStrategy:
    """Character-at-a-time input with echo and signal generation disabled."""

    __slots__ = ("_fd", "_saved")

    name = "raw"

    def __init__(self, fd: int) -> None:
        """Initialize the strategy for a terminal file descriptor."""
        self._fd = fd
        self._saved: list[object] | None = None

    def enter(self) -> None:
        """Switch the terminal to raw input.

        Raises:
            OSError: If the terminal cannot be configured.
        """
        import termios  # noqa: PLC0415

        try:
            saved = termios.tcgetattr(self._fd)
            attrs = termios.tcgetattr(self._fd)
            attrs[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
            attrs[6][termios.VMIN] = 1
            attrs[6][termios.VTIME] = 0
            termios.tcsetattr(self._fd, termios.TCSADRAIN, attrs)
        except termios.error as e:
            raise OSError(str(e)) from e
        self._saved = saved

    def restore(self) -> None:
        """Restore the saved terminal attributes. Never raises."""
        if self._saved is None:
            return
        import termios  # noqa: PLC0415

        saved, self._saved = self._saved, None
        with contextlib.suppress(termios.error, OSError):
            termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)

    async def run(self, dispatch: Dispatch) -> None:
        """Dispatch keystrokes until EOF, quit or interrupt."""
        while True:
            await anyio.wait_readable(self._fd)
            data = os.read(self._fd, _READ_SIZE)
            if not data:
                return
            for char in data.decode("utf-8", errors="ignore"):
                command = parse_key(char)
                if command is None:
                    continue
                await dispatch(command)
                if command in (Command.QUIT, Command.INTERRUPT):
                    return


@final
class LineModeStrategy:
    """Line-buffered input with command words."""

    __slots__ = ("_logger", "_stream", "_verbose")

    name = "line"

    def __init__(
        self,
        stream: TextIO,
        *,
        logger: FilteringBoundLogger | None = None,
        verbose: bool = False,
    ) -> None:
        """Initialize the strategy.

        Args:
            stream: Input stream to read lines from.
            logger: Structured logger for unknown input.
            verbose: Whether unknown input is logged.
        """
        self._stream = stream
        self._logger = logger or get_default_logger()
        self._verbose = verbose

    def enter(self) -> None:
        """Line mode needs no terminal changes."""

    def restore(self) -> None:
        """Line mode leaves nothing to restore."""

    async def run(self, dispatch: Dispatch) -> None:
        """Dispatch commands line by line until EOF or quit."""
        async for line in AsyncLineIterator(self._stream):
            command = parse_line(line)
            if command is None:
                if line.strip() and self._verbose:
                    self._logger.debug("unknown_command", command=line.strip())
                continue
            await dispatch(command)
            if command is Command.QUIT:
                return


@final
class AsyncLineIterator:
    """Reads lines from a text stream without blocking the event loop.

    POSIX streams with a file descriptor are polled with
    ``anyio.wait_readable``; anything else is read on a worker thread.
    """

    __slots__ = ("_buffer", "_eof", "_fd", "_stream")

    def __init__(self, stream: TextIO) -> None:
        """Initialize the iterator for a text stream."""
        self._stream = stream
        self._buffer = b""
        self._eof = False
        self._fd: int | None = None
        if not IS_WINDOWS:
            try:
                self._fd = stream.fileno()
            except (OSError, ValueError, AttributeError):
                self._fd = None

    def __aiter__(self) -> AsyncLineIterator:
        return self

    async def __anext__(self) -> str:
        if self._fd is None:
            line = await anyio.to_thread.run_sync(
                self._stream.readline, abandon_on_cancel=True
            )
            if not line:
                raise StopAsyncIteration
            return line

        while b"\n" not in self._buffer:
            if self._eof:
                if not self._buffer:
                    raise StopAsyncIteration
                rest, self._buffer = self._buffer, b""
                return rest.decode("utf-8", errors="replace")
            await anyio.wait_readable(self._fd)
            data = os.read(self._fd, _READ_SIZE)
            if data:
                self._buffer += data
            else:
                self._eof = True

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.decode("utf-8", errors="replace")


@final
class CommandDispatcher:
    """Maps terminal input and OS signals to reload, restart and quit.

    ``stop`` restores the terminal on every exit path and may be called any
    number of times.
    """

    __slots__ = (
        "_handle_signals",
        "_logger",
        "_scope",
        "_stdin",
        "_stopped",
        "_strategy",
        "_verbose",
    )

    def __init__(
        self,
        *,
        stdin: TextIO | None = None,
        handle_signals: bool = True,
        verbose: bool = False,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            stdin: Input stream. Uses ``sys.stdin`` if None.
            handle_signals: Whether to receive SIGINT/SIGTERM.
            verbose: Whether unknown input is logged.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._stdin = stdin
        self._handle_signals = handle_signals
        self._verbose = verbose
        self._logger = logger or get_default_logger()
        self._strategy: CommandStrategy | None = None
        self._scope: anyio.CancelScope | None = None
        self._stopped = False

    @property
    def strategy(self) -> CommandStrategy | None:
        """Return the negotiated input strategy, once started."""
        return self._strategy

    def select_strategy(self) -> CommandStrategy:
        """Negotiate the input strategy and prepare the terminal.

        Raw mode is used when stdin is a terminal that accepts the settings;
        any failure falls back to line mode.
        """
        stream = self._stdin if self._stdin is not None else sys.stdin
        line_mode = LineModeStrategy(
            stream, logger=self._logger, verbose=self._verbose
        )

        if IS_WINDOWS:
            return line_mode
        try:
            if not stream.isatty():
                return line_mode
            raw_mode = RawModeStrategy(stream.fileno())
            raw_mode.enter()
        except (OSError, ValueError, AttributeError, ImportError) as e:
            self._logger.debug("raw_mode_unavailable", error=str(e))
            return line_mode
        return raw_mode

    async def start(
        self,
        task_group: anyio.abc.TaskGroup,
        on_reload: CommandCallback,
        on_restart: CommandCallback,
        on_quit: QuitCallback,
    ) -> None:
        """Begin dispatching input and signals.

        Args:
            task_group: Task group that hosts the input and signal tasks.
            on_reload: Called for the reload command.
            on_restart: Called for the restart command.
            on_quit: Called with the reason for quit, Ctrl+C and signals.
        """
        self._stopped = False
        self._strategy = self.select_strategy()
        self._logger.debug("command_strategy", strategy=self._strategy.name)
        _ = await task_group.start(self._run, on_reload, on_restart, on_quit)

    async def _run(
        self,
        on_reload: CommandCallback,
        on_restart: CommandCallback,
        on_quit: QuitCallback,
        *,
        task_status: anyio.abc.TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        async def dispatch(command: Command) -> None:
            if command is Command.RELOAD:
                await on_reload()
            elif command is Command.RESTART:
                await on_restart()
            elif command is Command.INTERRUPT:
                # Same path as an external SIGINT
                await on_quit(signal.Signals.SIGINT.name)
            else:
                await on_quit("quit")

        strategy = self._strategy
        try:
            with anyio.CancelScope() as scope:
                self._scope = scope
                async with anyio.create_task_group() as tg:
                    if strategy is not None:
                        tg.start_soon(self._read_input, strategy, dispatch)
                    if self._handle_signals:
                        tg.start_soon(self._receive_signals, on_quit)
                    task_status.started()
        finally:
            if strategy is not None:
                strategy.restore()

    async def _read_input(self, strategy: CommandStrategy, dispatch: Dispatch) -> None:
        try:
            await strategy.run(dispatch)
        except OSError as e:
            self._logger.debug("stdin_error", error=str(e))

    async def _receive_signals(self, on_quit: QuitCallback) -> None:
        signals = [signal.SIGINT]
        if not IS_WINDOWS:
            signals.append(signal.SIGTERM)
        try:
            with anyio.open_signal_receiver(*signals) as receiver:
                async for signum in receiver:
                    await on_quit(signal.Signals(signum).name)
        except NotImplementedError:
            # Platforms without signal receivers get KeyboardInterrupt instead
            self._logger.debug("signal_receiver_unavailable")

    def stop(self) -> None:
        """Restore the terminal and cancel input and signal handling.

        Restoration errors are swallowed. Safe to call multiple times.
        """
        if self._stopped:
            return
        self._stopped = True
        if self._strategy is not None:
            self._strategy.restore()
        if self._scope is not None:
            self._scope.cancel()
