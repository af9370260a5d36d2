import io

import pytest
from rich.console import Console

from hotloop.supervisor import ConsoleOutputSink, OutputSink

pytestmark = pytest.mark.anyio


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, width=100, color_system=None, legacy_windows=False)
    return console, buffer


@pytest.fixture
def streams() -> tuple[ConsoleOutputSink, io.StringIO, io.StringIO]:
    out, out_buffer = _console()
    err, err_buffer = _console()
    return ConsoleOutputSink(out, err), out_buffer, err_buffer


class TestConsoleOutputSink:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(ConsoleOutputSink(), OutputSink)

    async def test_stdout_lines_go_to_stdout(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, err = streams

        await sink.write_line("stdout", "serving on :8000")

        assert out.getvalue() == "serving on :8000\n"
        assert err.getvalue() == ""

    async def test_stderr_lines_go_to_stderr(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, err = streams

        await sink.write_line("stderr", "Traceback (most recent call last):")

        assert err.getvalue() == "Traceback (most recent call last):\n"
        assert out.getvalue() == ""

    async def test_lines_are_not_interpreted_as_markup(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, _ = streams

        await sink.write_line("stdout", "[bold]not bold[/bold] {'a': 1}")

        assert out.getvalue() == "[bold]not bold[/bold] {'a': 1}\n"

    async def test_long_lines_are_not_wrapped(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, _ = streams
        line = "x" * 250

        await sink.write_line("stdout", line)

        assert out.getvalue() == line + "\n"

    async def test_status_is_prefixed(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, _ = streams

        await sink.write_status("Reloaded", "success")

        assert out.getvalue() == "[hotloop] Reloaded\n"

    async def test_error_status_goes_to_stderr(
        self, streams: tuple[ConsoleOutputSink, io.StringIO, io.StringIO]
    ) -> None:
        sink, out, err = streams

        await sink.write_status("Failed to start", "error")

        assert err.getvalue() == "[hotloop] Failed to start\n"
        assert out.getvalue() == ""
