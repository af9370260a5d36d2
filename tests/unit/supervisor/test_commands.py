from __future__ import annotations

import io
import os
import sys
from typing import TYPE_CHECKING

import anyio
import pytest

from hotloop.supervisor import Command, CommandDispatcher
from hotloop.supervisor._commands import (
    INTERRUPT_CHAR,
    AsyncLineIterator,
    LineModeStrategy,
    RawModeStrategy,
    parse_key,
    parse_line,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pytest_mock import MockerFixture

pytestmark = pytest.mark.anyio

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX only")


class CommandRecorder:
    def __init__(self) -> None:
        self.commands: list[Command] = []
        self.quit_reasons: list[str] = []

    async def dispatch(self, command: Command) -> None:
        self.commands.append(command)

    async def on_reload(self) -> None:
        self.commands.append(Command.RELOAD)

    async def on_restart(self) -> None:
        self.commands.append(Command.RESTART)

    async def on_quit(self, reason: str) -> None:
        self.quit_reasons.append(reason)


@pytest.fixture
def recorder() -> CommandRecorder:
    return CommandRecorder()


@pytest.fixture
def pipe() -> Iterator[tuple[int, int]]:
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


class TestParseKey:
    @pytest.mark.parametrize(
        ("char", "expected"),
        [
            ("r", Command.RELOAD),
            ("R", Command.RESTART),
            ("q", Command.QUIT),
            ("Q", Command.QUIT),
            (INTERRUPT_CHAR, Command.INTERRUPT),
        ],
    )
    def test_known_keys(self, char: str, expected: Command) -> None:
        assert parse_key(char) is expected

    @pytest.mark.parametrize("char", ["x", " ", "\n", "1"])
    def test_other_keys_are_ignored(self, char: str) -> None:
        assert parse_key(char) is None


class TestParseLine:
    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("r", Command.RELOAD),
            ("  r\n", Command.RELOAD),
            ("R", Command.RESTART),
            ("q", Command.QUIT),
            ("quit", Command.QUIT),
            ("EXIT\n", Command.QUIT),
            ("Quit", Command.QUIT),
        ],
    )
    def test_commands(self, line: str, expected: Command) -> None:
        assert parse_line(line) is expected

    @pytest.mark.parametrize("line", ["", "\n", "reload", "rr", "quit now"])
    def test_unknown_lines(self, line: str) -> None:
        assert parse_line(line) is None


class TestAsyncLineIterator:
    async def test_reads_stream_without_descriptor(self) -> None:
        lines = [line async for line in AsyncLineIterator(io.StringIO("a\nb\n"))]

        assert lines == ["a\n", "b\n"]

    @posix_only
    async def test_polls_descriptor(self, pipe: tuple[int, int]) -> None:
        read_fd, write_fd = pipe
        _ = os.write(write_fd, b"first\nsecond\nlast")
        os.close(write_fd)

        with os.fdopen(read_fd, closefd=False) as stream:
            lines = [line async for line in AsyncLineIterator(stream)]

        assert lines == ["first", "second", "last"]


class TestLineModeStrategy:
    async def test_dispatches_until_quit(self, recorder: CommandRecorder) -> None:
        strategy = LineModeStrategy(io.StringIO("r\nhello\nR\nquit\nr\n"))

        with anyio.fail_after(5):
            await strategy.run(recorder.dispatch)

        assert recorder.commands == [Command.RELOAD, Command.RESTART, Command.QUIT]

    async def test_returns_on_eof(self, recorder: CommandRecorder) -> None:
        strategy = LineModeStrategy(io.StringIO("r\n"))

        with anyio.fail_after(5):
            await strategy.run(recorder.dispatch)

        assert recorder.commands == [Command.RELOAD]

    async def test_unknown_input_logged_when_verbose(
        self, recorder: CommandRecorder, mocker: MockerFixture
    ) -> None:
        logger = mocker.Mock()
        strategy = LineModeStrategy(io.StringIO("bogus\n"), logger=logger, verbose=True)

        await strategy.run(recorder.dispatch)

        logger.debug.assert_called_once_with("unknown_command", command="bogus")

    def test_enter_and_restore_are_noops(self) -> None:
        strategy = LineModeStrategy(io.StringIO(""))

        strategy.enter()
        strategy.restore()

        assert strategy.name == "line"


@posix_only
class TestRawModeStrategy:
    async def test_dispatches_keys_until_quit(
        self, recorder: CommandRecorder, pipe: tuple[int, int]
    ) -> None:
        read_fd, write_fd = pipe
        _ = os.write(write_fd, b"xrRqr")
        strategy = RawModeStrategy(read_fd)

        with anyio.fail_after(5):
            await strategy.run(recorder.dispatch)

        assert recorder.commands == [Command.RELOAD, Command.RESTART, Command.QUIT]

    async def test_interrupt_byte_stops(
        self, recorder: CommandRecorder, pipe: tuple[int, int]
    ) -> None:
        read_fd, write_fd = pipe
        _ = os.write(write_fd, b"\x03r")

        with anyio.fail_after(5):
            await RawModeStrategy(read_fd).run(recorder.dispatch)

        assert recorder.commands == [Command.INTERRUPT]

    def test_enter_fails_on_non_terminal(self, pipe: tuple[int, int]) -> None:
        read_fd, _ = pipe

        with pytest.raises(OSError):
            RawModeStrategy(read_fd).enter()

    def test_enter_and_restore_terminal(self) -> None:
        import termios  # noqa: PLC0415

        master, slave = os.openpty()
        try:
            before = termios.tcgetattr(slave)
            strategy = RawModeStrategy(slave)

            strategy.enter()
            raw = termios.tcgetattr(slave)
            strategy.restore()
            strategy.restore()

            assert not raw[3] & termios.ICANON
            assert not raw[3] & termios.ECHO
            assert not raw[3] & termios.ISIG
            assert termios.tcgetattr(slave)[3] == before[3]
        finally:
            os.close(master)
            os.close(slave)


class TestCommandDispatcher:
    def test_non_terminal_selects_line_mode(self) -> None:
        dispatcher = CommandDispatcher(stdin=io.StringIO(""))

        assert dispatcher.select_strategy().name == "line"

    @posix_only
    def test_terminal_selects_raw_mode(self) -> None:
        master, slave = os.openpty()
        try:
            with os.fdopen(slave, closefd=False) as stream:
                strategy = CommandDispatcher(stdin=stream).select_strategy()
                try:
                    assert strategy.name == "raw"
                finally:
                    strategy.restore()
        finally:
            os.close(master)
            os.close(slave)

    async def test_routes_commands_to_callbacks(
        self, recorder: CommandRecorder
    ) -> None:
        dispatcher = CommandDispatcher(
            stdin=io.StringIO("r\nR\nexit\n"), handle_signals=False
        )

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                await dispatcher.start(
                    tg, recorder.on_reload, recorder.on_restart, recorder.on_quit
                )

        assert recorder.commands == [Command.RELOAD, Command.RESTART]
        assert recorder.quit_reasons == ["quit"]
        assert dispatcher.strategy is not None
        assert dispatcher.strategy.name == "line"

    @posix_only
    async def test_raw_interrupt_byte_quits_like_sigint(
        self, recorder: CommandRecorder, pipe: tuple[int, int], mocker: MockerFixture
    ) -> None:
        read_fd, write_fd = pipe
        _ = os.write(write_fd, b"\x03")
        _ = mocker.patch.object(
            CommandDispatcher, "select_strategy", return_value=RawModeStrategy(read_fd)
        )
        dispatcher = CommandDispatcher(stdin=io.StringIO(""), handle_signals=False)

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                await dispatcher.start(
                    tg, recorder.on_reload, recorder.on_restart, recorder.on_quit
                )

        assert recorder.quit_reasons == ["SIGINT"]

    @posix_only
    async def test_stop_cancels_and_is_idempotent(
        self, recorder: CommandRecorder, pipe: tuple[int, int]
    ) -> None:
        read_fd, _ = pipe
        with os.fdopen(read_fd, closefd=False) as stream:
            dispatcher = CommandDispatcher(stdin=stream, handle_signals=False)

            with anyio.fail_after(5):
                async with anyio.create_task_group() as tg:
                    await dispatcher.start(
                        tg, recorder.on_reload, recorder.on_restart, recorder.on_quit
                    )
                    dispatcher.stop()
                    dispatcher.stop()

        assert recorder.commands == []
        assert recorder.quit_reasons == []

    def test_stop_before_start_is_safe(self) -> None:
        dispatcher = CommandDispatcher(stdin=io.StringIO(""))

        dispatcher.stop()
        dispatcher.stop()
