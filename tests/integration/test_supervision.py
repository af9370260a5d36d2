"""End-to-end supervision of a real program."""

from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from typing import TYPE_CHECKING

import anyio
import anyio.abc
import pytest
from anyio.streams.text import TextReceiveStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

pytestmark = pytest.mark.anyio

APP = """\
import anyio

import helper
import hotloop

VERSION = {version}


async def main():
    last = None
    while True:
        if helper.VALUE != last:
            last = helper.VALUE
            print(f"value={{last}} version={{VERSION}}", flush=True)
        await anyio.sleep(0.05)


if __name__ == "__main__":
    hotloop.start(main, watch_paths=[{root!r}], debounce=0.1)
"""


def write_later(path: Path, content: str) -> None:
    """Write a file and push its mtime forward past timestamp granularity."""
    previous = path.stat().st_mtime_ns if path.exists() else 0
    _ = path.write_text(content)
    later = max(path.stat().st_mtime_ns, previous) + 2_000_000_000
    os.utime(path, ns=(later, later))


class Transcript:
    """Collects the supervisor's stdout and waits for expected lines."""

    def __init__(self, process: anyio.abc.Process) -> None:
        self.process = process
        self.lines: list[str] = []
        self._changed = anyio.Event()

    async def collect(self) -> None:
        assert self.process.stdout is not None
        pending = ""
        async for chunk in TextReceiveStream(self.process.stdout):
            pending += chunk
            *lines, pending = pending.split("\n")
            self.lines.extend(lines)
            self._changed.set()
            self._changed = anyio.Event()

    async def expect(self, text: str, timeout: float = 15.0) -> int:
        """Wait for a line containing ``text`` and return its index."""
        with anyio.fail_after(timeout):
            while True:
                for index, line in enumerate(self.lines):
                    if text in line:
                        return index
                await self._changed.wait()

    async def send(self, text: str) -> None:
        assert self.process.stdin is not None
        await self.process.stdin.send(text.encode())


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    _ = (root / "helper.py").write_text("VALUE = 1\n")
    _ = (root / "app.py").write_text(APP.format(version=1, root=str(root)))
    return root


@pytest.fixture
async def supervisor(project: Path) -> AsyncIterator[Transcript]:
    env = {**os.environ, "PYTHONUNBUFFERED": "1"}
    env.pop("HOTLOOP_DEV_CHILD", None)
    process = await anyio.open_process(
        [sys.executable, str(project / "app.py")],
        cwd=str(project),
        env=env,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    transcript = Transcript(process)
    async with process, anyio.create_task_group() as tg:
        tg.start_soon(transcript.collect)
        try:
            yield transcript
        finally:
            if process.returncode is None:
                process.kill()
            tg.cancel_scope.cancel()


async def test_live_patch_keeps_process(project: Path, supervisor: Transcript) -> None:
    _ = await supervisor.expect("value=1 version=1")
    await anyio.sleep(0.3)

    write_later(project / "helper.py", "VALUE = 2\n")

    _ = await supervisor.expect("value=2 version=1")
    _ = await supervisor.expect("[hotloop] Reloaded 1 module(s): helper")
    assert not any("Restarted" in line for line in supervisor.lines)

    await supervisor.send("q\n")
    with anyio.fail_after(10):
        assert await supervisor.process.wait() == 0


async def test_entry_module_change_restarts(
    project: Path, supervisor: Transcript
) -> None:
    _ = await supervisor.expect("value=1 version=1")
    await anyio.sleep(0.3)

    write_later(project / "app.py", APP.format(version=2, root=str(project)))

    _ = await supervisor.expect("[hotloop] Change detected: app.py")
    _ = await supervisor.expect("[hotloop] Restarted")
    _ = await supervisor.expect("value=1 version=2")

    await supervisor.send("q\n")
    with anyio.fail_after(10):
        assert await supervisor.process.wait() == 0


async def test_restart_command(supervisor: Transcript) -> None:
    _ = await supervisor.expect("value=1 version=1")

    await supervisor.send("R\n")

    _ = await supervisor.expect("[hotloop] Restarted")
    with anyio.fail_after(15):
        while sum("value=1 version=1" in line for line in supervisor.lines) < 2:
            await anyio.sleep(0.05)

    await supervisor.send("quit\n")
    with anyio.fail_after(10):
        assert await supervisor.process.wait() == 0


async def test_ignored_file_does_not_trigger(
    project: Path, supervisor: Transcript
) -> None:
    _ = await supervisor.expect("value=1 version=1")

    (project / "build").mkdir()
    write_later(project / "build" / "generated.py", "X = 1\n")
    write_later(project / "notes.txt", "hello\n")
    await anyio.sleep(1.0)

    assert not any("Change detected" in line for line in supervisor.lines)

    await supervisor.send("q\n")
    with anyio.fail_after(10):
        assert await supervisor.process.wait() == 0
