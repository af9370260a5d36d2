"""Child process lifecycle management.

This module provides the ProcessSupervisor that spawns the supervised
child, and the ChildProcess handle that forwards its output, watches for
the runtime service announcement and reports its exit.
"""

from __future__ import annotations

import os
import signal
import socket
import subprocess
import sys
import time
from typing import TYPE_CHECKING, Literal, cast, final

import anyio
import anyio.abc
from anyio.streams.text import TextReceiveStream

from hotloop._env import CHILD_ENV_VAR, RUNTIME_PORT_ENV_VAR
from hotloop.exceptions import ChildStartError, ChildStopError
from hotloop.runtime._wire import parse_announcement
from hotloop.utils import get_default_logger

from ._output import ConsoleOutputSink

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from structlog.typing import FilteringBoundLogger

    from hotloop.config import ReloadConfig

    from ._protocol import OutputSink

    AnnounceCallback = Callable[["ChildProcess", str], Awaitable[None]]

IS_WINDOWS = sys.platform == "win32"

_DRAIN_TIMEOUT = 1.0
"""Seconds to keep forwarding output after the child has exited."""


def default_child_command() -> list[str]:
    """Return the command that relaunches the current program."""
    return [sys.executable, *sys.orig_argv[1:]]


def find_open_port(host: str = "127.0.0.1") -> int:
    """Find an available port by binding to port 0."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        addr: tuple[str, int] = cast("tuple[str, int]", s.getsockname())
        return addr[1]


async def iter_lines(stream: anyio.abc.ByteReceiveStream) -> AsyncIterator[str]:
    """Yield decoded lines from a byte stream, without line terminators."""
    pending = ""
    async for chunk in TextReceiveStream(stream, errors="replace"):
        pending += chunk
        *lines, pending = pending.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    if pending:
        yield pending.rstrip("\r")


@final
class ChildProcess:
    """Handle for one supervised child process.

    Attributes:
        process: The anyio process handle.
        generation: Sequence number of this child within the session.
        runtime_address: Last runtime service address the child announced.
        announced: Set once the child has announced its runtime service.
        exit_code: Exit code once the child has exited.
        started_at: Monotonic time the child was spawned.
    """

    __slots__ = (
        "announced",
        "exit_code",
        "exited",
        "generation",
        "process",
        "runtime_address",
        "started_at",
    )

    def __init__(self, process: anyio.abc.Process, generation: int) -> None:
        """Initialize the handle.

        Args:
            process: The spawned process.
            generation: Sequence number of this child.
        """
        self.process = process
        self.generation = generation
        self.runtime_address: str | None = None
        self.announced = anyio.Event()
        self.exited = anyio.Event()
        self.exit_code: int | None = None
        self.started_at = time.monotonic()

    @property
    def pid(self) -> int:
        """Return the process ID."""
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        """Return the exit code, or None while the process runs."""
        return self.process.returncode

    async def monitor(
        self,
        output: OutputSink,
        on_announce: AnnounceCallback | None = None,
    ) -> int:
        """Forward output until the child exits.

        Every stdout/stderr line is forwarded to ``output`` and scanned for
        the runtime service announcement.

        Args:
            output: Sink for forwarded lines.
            on_announce: Called for every announcement line.

        Returns:
            The child's exit code.
        """
        try:
            async with anyio.create_task_group() as tg:
                if self.process.stdout is not None:
                    tg.start_soon(
                        self._forward, self.process.stdout, "stdout", output, on_announce
                    )
                if self.process.stderr is not None:
                    tg.start_soon(
                        self._forward, self.process.stderr, "stderr", output, on_announce
                    )
                exit_code = await self.process.wait()
                # Late output still drains, but never for longer than this
                tg.cancel_scope.deadline = anyio.current_time() + _DRAIN_TIMEOUT
        finally:
            if self.process.returncode is not None:
                self.exit_code = self.process.returncode
                self.exited.set()

        return exit_code

    async def _forward(
        self,
        stream: anyio.abc.ByteReceiveStream,
        stream_name: Literal["stdout", "stderr"],
        output: OutputSink,
        on_announce: AnnounceCallback | None,
    ) -> None:
        try:
            async for line in iter_lines(stream):
                try:  # noqa: SIM105
                    await output.write_line(stream_name, line)
                except Exception:  # noqa: BLE001, S110
                    # Output sink errors should not stop forwarding
                    pass

                address = parse_announcement(line)
                if address is not None:
                    self.runtime_address = address
                    self.announced.set()
                    if on_announce is not None:
                        await on_announce(self, address)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Stream closed, which is expected on process exit
            pass


@final
class ProcessSupervisor:
    """Spawns and terminates the supervised child process.

    Only the orchestrator calls ``terminate``; this class never decides on
    its own that a child should go away.
    """

    __slots__ = (
        "_command",
        "_config",
        "_generation",
        "_logger",
        "_output",
        "_runtime_port",
    )

    def __init__(
        self,
        config: ReloadConfig,
        *,
        command: Sequence[str] | None = None,
        output: OutputSink | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the process supervisor.

        Args:
            config: Supervisor configuration.
            command: Child command line. Relaunches the current program if None.
            output: Sink for forwarded output. Uses ConsoleOutputSink if None.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._config = config
        self._command = list(command) if command is not None else None
        self._output: OutputSink = output or ConsoleOutputSink()
        self._logger = logger or get_default_logger()
        self._generation = 0
        self._runtime_port = config.runtime_port

    @property
    def output(self) -> OutputSink:
        """Return the sink child output is forwarded to."""
        return self._output

    @property
    def command(self) -> list[str]:
        """Return the command used to spawn children."""
        return self._command if self._command is not None else default_child_command()

    @property
    def runtime_port(self) -> int:
        """Return the runtime port handed to children, choosing one if needed.

        The port is chosen once per session so the address stays the same
        across restarts.
        """
        if self._runtime_port == 0:
            self._runtime_port = find_open_port()
        return self._runtime_port

    def child_environment(self, env: dict[str, str] | None = None) -> dict[str, str]:
        """Build the environment for a new child.

        Args:
            env: Extra variables for the child.

        Returns:
            The current environment plus ``env`` and the supervision markers.
        """
        environment = {**os.environ, **(env or {})}
        environment[CHILD_ENV_VAR] = "1"
        environment[RUNTIME_PORT_ENV_VAR] = str(self.runtime_port)
        environment.setdefault("PYTHONUNBUFFERED", "1")
        return environment

    async def start_child(self, env: dict[str, str] | None = None) -> ChildProcess:
        """Spawn a new child process.

        Args:
            env: Extra environment variables for the child.

        Returns:
            The handle of the running child.

        Raises:
            ChildStartError: If the process cannot be spawned.
        """
        command = self.command
        try:
            process = await anyio.open_process(
                command,
                env=self.child_environment(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                # Terminal signals go to the supervisor, which stops the child
                start_new_session=not IS_WINDOWS,
            )
        except OSError as e:
            msg = f"Failed to start child process {' '.join(command)}: {e}"
            raise ChildStartError(msg, cause=e) from e

        self._generation += 1
        child = ChildProcess(process, self._generation)
        self._logger.info(
            "child_started", pid=child.pid, generation=child.generation
        )
        return child

    def _send_graceful(self, child: ChildProcess) -> None:
        try:
            os.killpg(child.pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            child.process.send_signal(signal.SIGTERM)
        except OSError as e:
            msg = f"Failed to send SIGTERM to process group {child.pid}: {e}"
            raise ChildStopError(msg, pid=child.pid, cause=e) from e

    def _send_kill(self, child: ChildProcess) -> None:
        if not IS_WINDOWS:
            try:
                os.killpg(child.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
            except OSError as e:
                msg = f"Failed to kill process group {child.pid}: {e}"
                raise ChildStopError(msg, pid=child.pid, cause=e) from e
            else:
                return
        child.process.kill()

    async def terminate(self, child: ChildProcess) -> int | None:
        """Stop a child and wait for its exit code.

        POSIX: SIGTERM to the child's process group, then SIGKILL if it has
        not exited within ``shutdown_timeout``. Windows: one unconditional
        kill. Waiting for the exit code is bounded by the same timeout.

        Args:
            child: The child to stop.

        Returns:
            The exit code, or None if the process could not be reaped.
        """
        process = child.process
        if process.returncode is not None:
            return process.returncode

        timeout = self._config.shutdown_timeout
        try:
            if IS_WINDOWS:
                process.kill()
            else:
                self._send_graceful(child)

            with anyio.move_on_after(timeout):
                _ = await process.wait()

            if process.returncode is None:
                self._logger.warning(
                    "child_kill_escalated", pid=child.pid, timeout=timeout
                )
                self._send_kill(child)
                with anyio.move_on_after(timeout):
                    _ = await process.wait()
        except ProcessLookupError:
            # Process already exited
            pass
        except (ChildStopError, OSError) as e:
            self._logger.error("child_terminate_failed", pid=child.pid, error=str(e))

        if process.returncode is None:
            self._logger.error("child_not_reaped", pid=child.pid)
        else:
            self._logger.info(
                "child_stopped", pid=child.pid, exit_code=process.returncode
            )
        return process.returncode
