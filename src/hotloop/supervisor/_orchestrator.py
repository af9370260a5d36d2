"""Reload orchestrator: the supervisor's single state machine.

This module provides the ReloadOrchestrator that merges file changes,
operator commands and child lifecycle events into one serially drained
event stream, and decides between a live patch, a restart and shutdown.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc

from hotloop.config import ReloadMode
from hotloop.exceptions import ChildStartError, WatchPathError
from hotloop.utils import get_default_logger

from ._filter import WatchFilter
from ._models import (
    BUSY_STATES,
    EXPECTED_EXIT_STATES,
    ReloadResult,
    SupervisorEvent,
    SupervisorEventType,
    SupervisorState,
)

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from hotloop.config import ReloadConfig

    from ._commands import CommandDispatcher
    from ._process import ChildProcess, ProcessSupervisor
    from ._protocol import OutputSink, StatusLevel
    from ._runtime import RuntimeConnection, RuntimeServiceClient
    from ._watcher import FileWatcher

_TRIGGER_EVENTS = frozenset(
    {
        SupervisorEventType.FILE_CHANGED,
        SupervisorEventType.RELOAD_REQUESTED,
        SupervisorEventType.RESTART_REQUESTED,
    }
)


def exit_status(code: int | None) -> int:
    """Convert a child return code into a process exit status.

    Negative codes (killed by signal N) become ``128 + N``.
    """
    if code is None:
        return 1
    if code < 0:
        return 128 - code
    return code


@final
class ReloadOrchestrator:
    """Owns the supervisor state, the child handle and the runtime connection.

    Producers (watcher, dispatcher, child monitors) only post events; the
    drain loop is the only consumer. A reload or restart cycle runs in its
    own task so the drain loop keeps dropping triggers and honouring quit
    while it is in flight.
    """

    __slots__ = (
        "_child",
        "_config",
        "_connection",
        "_cycle_done",
        "_cycle_scope",
        "_dispatcher",
        "_exit_code",
        "_filter",
        "_logger",
        "_output",
        "_processes",
        "_receive",
        "_runtime",
        "_runtime_lock",
        "_send",
        "_shutdown_started",
        "_startup_error",
        "_state",
        "_task_group",
        "_transitions",
        "_watcher",
    )

    def __init__(
        self,
        config: ReloadConfig,
        *,
        watcher: FileWatcher,
        dispatcher: CommandDispatcher,
        processes: ProcessSupervisor,
        runtime: RuntimeServiceClient,
        output: OutputSink | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Supervisor configuration.
            watcher: Source of debounced file changes.
            dispatcher: Source of operator commands and signals.
            processes: Spawns and terminates children.
            runtime: Connects to the child's runtime service.
            output: Sink for status messages. Uses the process supervisor's
                sink if None.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._config = config
        self._watcher = watcher
        self._dispatcher = dispatcher
        self._processes = processes
        self._runtime = runtime
        self._output: OutputSink = output or processes.output
        self._logger = logger or get_default_logger()
        self._filter = WatchFilter.from_config(config)

        self._state = SupervisorState.STARTING
        self._transitions: list[tuple[SupervisorState, SupervisorState]] = []
        self._send, self._receive = anyio.create_memory_object_stream[
            SupervisorEvent
        ](max_buffer_size=math.inf)

        self._child: ChildProcess | None = None
        self._connection: RuntimeConnection | None = None
        self._runtime_lock = anyio.Lock()
        self._task_group: anyio.abc.TaskGroup | None = None
        self._cycle_scope: anyio.CancelScope | None = None
        self._cycle_done: anyio.Event | None = None
        self._shutdown_started = False
        self._startup_error: WatchPathError | None = None
        self._exit_code = 0

    @property
    def state(self) -> SupervisorState:
        """Return the current state."""
        return self._state

    @property
    def transitions(self) -> list[tuple[SupervisorState, SupervisorState]]:
        """Return the history of state transitions as ``(from, to)`` pairs."""
        return list(self._transitions)

    @property
    def child(self) -> ChildProcess | None:
        """Return the current child, if any."""
        return self._child

    @property
    def connection(self) -> RuntimeConnection | None:
        """Return the current runtime connection, if any."""
        return self._connection

    # Trigger entry points

    def request_reload(self, path: str | None = None) -> None:
        """Ask for a reload following the mode policy."""
        if path is None:
            self._post(SupervisorEvent(SupervisorEventType.RELOAD_REQUESTED))
        else:
            self._post(SupervisorEvent(SupervisorEventType.FILE_CHANGED, path=path))

    def request_restart(self) -> None:
        """Ask for a full restart regardless of the mode."""
        self._post(SupervisorEvent(SupervisorEventType.RESTART_REQUESTED))

    def request_quit(self) -> None:
        """Ask for a graceful shutdown."""
        self._post(SupervisorEvent(SupervisorEventType.QUIT_REQUESTED))

    def _post(self, event: SupervisorEvent) -> None:
        try:
            self._send.send_nowait(event)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self._logger.debug("event_after_shutdown", event_type=event.event_type)

    # Callbacks handed to producers

    async def _on_changed(self, path: str) -> None:
        self.request_reload(path)

    async def _on_reload(self) -> None:
        self.request_reload()

    async def _on_restart(self) -> None:
        self.request_restart()

    async def _on_quit(self, reason: str) -> None:
        if reason.startswith("SIG"):
            self._post(
                SupervisorEvent(SupervisorEventType.SIGNAL_RECEIVED, signal_name=reason)
            )
        else:
            self.request_quit()

    async def _on_announce(self, child: ChildProcess, address: str) -> None:
        self._post(
            SupervisorEvent(
                SupervisorEventType.RUNTIME_ANNOUNCED,
                generation=child.generation,
                address=address,
            )
        )

    # Main loop

    async def run(self) -> int:
        """Supervise until quit, signal or child loss.

        Returns:
            The exit code: 0 on quit or signal, the child's exit status on
            child loss, 1 if the first child cannot be started.

        Raises:
            WatchPathError: If none of the watch paths exist.
        """
        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                if await self._startup(tg):
                    async with self._receive:
                        async for event in self._receive:
                            await self._handle(event)
                tg.cancel_scope.cancel()
        finally:
            self._task_group = None
            self._watcher.stop()
            self._dispatcher.stop()

        if self._startup_error is not None:
            raise self._startup_error
        return self._exit_code

    async def _startup(self, task_group: anyio.abc.TaskGroup) -> bool:
        try:
            await self._watcher.start(task_group, self._on_changed)
        except WatchPathError as e:
            self._startup_error = e
            self._transition(SupervisorState.STOPPED)
            return False

        await self._dispatcher.start(
            task_group, self._on_reload, self._on_restart, self._on_quit
        )

        try:
            with anyio.CancelScope(shield=True):
                _ = await self._spawn()
        except ChildStartError as e:
            self._logger.error("child_start_failed", error=str(e))
            await self._status(f"Failed to start: {e}", "error")
            await self._shutdown(1)
            return False

        self._transition(SupervisorState.RUNNING)
        await self._status(self._banner())
        return True

    def _banner(self) -> str:
        roots = ", ".join(self._watcher.roots) or "."
        return (
            f"Watching {roots} (mode: {self._config.mode}). "
            "Press r to reload, R to restart, q to quit."
        )

    async def _handle(self, event: SupervisorEvent) -> None:
        event_type = event.event_type
        if event_type in _TRIGGER_EVENTS:
            self._begin_cycle(event)
        elif event_type is SupervisorEventType.QUIT_REQUESTED:
            await self._shutdown(event.exit_code or 0)
        elif event_type is SupervisorEventType.SIGNAL_RECEIVED:
            self._logger.info("signal_received", signal=event.signal_name)
            await self._shutdown(0)
        elif event_type is SupervisorEventType.CHILD_EXITED:
            await self._handle_child_exit(event)
        elif event_type is SupervisorEventType.RUNTIME_ANNOUNCED:
            self._handle_announce(event)

    async def _handle_child_exit(self, event: SupervisorEvent) -> None:
        child = self._child
        if child is None or event.generation != child.generation:
            self._logger.debug("stale_child_exit", generation=event.generation)
            return
        if self._state in EXPECTED_EXIT_STATES:
            return

        code = exit_status(event.exit_code)
        self._logger.warning("child_lost", pid=child.pid, exit_code=event.exit_code)
        await self._status(f"Process exited with code {event.exit_code}", "error")
        await self._shutdown(code)

    def _handle_announce(self, event: SupervisorEvent) -> None:
        child = self._child
        if child is None or event.generation != child.generation:
            return
        # Restart cycles attach to the new child themselves
        if self._state is not SupervisorState.RUNNING or event.address is None:
            return
        if self._task_group is not None:
            self._task_group.start_soon(self._attach, child, event.address)

    # Cycles

    def _begin_cycle(self, event: SupervisorEvent) -> None:
        if self._state is not SupervisorState.RUNNING or self._cycle_scope is not None:
            self._logger.info(
                "event_dropped", event_type=event.event_type, state=self._state
            )
            return
        if self._task_group is None:
            return

        restart = (
            event.event_type is SupervisorEventType.RESTART_REQUESTED
            or self._config.mode is ReloadMode.RESTART
        )
        self._cycle_scope = anyio.CancelScope()
        self._cycle_done = anyio.Event()
        self._transition(
            SupervisorState.RESTARTING if restart else SupervisorState.RELOADING
        )
        self._task_group.start_soon(self._run_cycle, self._cycle_scope, restart, event)

    async def _run_cycle(
        self,
        scope: anyio.CancelScope,
        restart: bool,
        event: SupervisorEvent,
    ) -> None:
        done = self._cycle_done
        try:
            with scope:
                if event.path is not None:
                    await self._status(
                        f"Change detected: {self._filter.relative_path(event.path)}"
                    )
                if not restart:
                    result = await self._live_patch()
                    if result.success:
                        await self._status(self._describe_reload(result), "success")
                        self._finish_cycle()
                        return
                    self._logger.warning("reload_failed", detail=result.detail)
                    if self._config.mode is ReloadMode.RELOAD:
                        await self._status(
                            f"Reload failed: {result.detail or 'unknown error'}",
                            "warning",
                        )
                        self._finish_cycle()
                        return
                    await self._status(
                        f"Live patch unavailable ({result.detail or 'failed'}), "
                        "restarting",
                        "warning",
                    )
                    self._transition(SupervisorState.RESTARTING)

                await self._restart()
                await self._status("Restarted", "success")
                self._finish_cycle()
        except ChildStartError as e:
            self._logger.error("child_start_failed", error=str(e))
            await self._status(f"Failed to restart: {e}", "error")
            self._post(SupervisorEvent(SupervisorEventType.QUIT_REQUESTED, exit_code=1))
        finally:
            self._cycle_scope = None
            if done is not None:
                done.set()

    def _finish_cycle(self) -> None:
        if self._state in BUSY_STATES:
            self._transition(SupervisorState.RUNNING)
        child = self._child
        # A child that died during the cycle is reported once the cycle ends
        if child is not None and child.exited.is_set():
            self._post(
                SupervisorEvent(
                    SupervisorEventType.CHILD_EXITED,
                    generation=child.generation,
                    exit_code=child.exit_code,
                )
            )

    @staticmethod
    def _describe_reload(result: ReloadResult) -> str:
        if not result.reloaded:
            return "Reloaded (no modules changed)"
        names = ", ".join(result.reloaded)
        return f"Reloaded {len(result.reloaded)} module(s): {names}"

    async def _live_patch(self) -> ReloadResult:
        async with self._runtime_lock:
            connection = self._connection
        if connection is None:
            return ReloadResult(success=False, detail="not connected")
        return await connection.reload()

    async def _restart(self) -> None:
        # Old child fully gone before the new one starts, even when preempted
        with anyio.CancelScope(shield=True):
            await self._detach()
            old = self._child
            if old is not None:
                _ = await self._processes.terminate(old)
            child = await self._spawn()

        with anyio.move_on_after(self._config.startup_timeout):
            await child.announced.wait()
        if child.runtime_address is None:
            self._logger.info("runtime_not_announced", pid=child.pid)
            return
        await self._attach(child, child.runtime_address)

    async def _spawn(self) -> ChildProcess:
        child = await self._processes.start_child()
        self._child = child
        if self._task_group is not None:
            self._task_group.start_soon(self._monitor, child)
        return child

    async def _monitor(self, child: ChildProcess) -> None:
        exit_code = await child.monitor(self._output, self._on_announce)
        self._post(
            SupervisorEvent(
                SupervisorEventType.CHILD_EXITED,
                generation=child.generation,
                exit_code=exit_code,
            )
        )

    # Runtime connection

    async def _attach(self, child: ChildProcess, address: str) -> None:
        async with self._runtime_lock:
            if child is not self._child or self._shutdown_started:
                return
            current = self._connection
            if current is not None and current.alive and current.address == address:
                return
            self._connection = None
            await self._runtime.dispose(current)

            result = await self._runtime.connect(address)
            if child is not self._child or self._shutdown_started:
                await self._runtime.dispose(result.connection)
                return
            if result.connection is None:
                self._logger.warning(
                    "runtime_connect_failed", address=address, error=result.error
                )
                return
            self._connection = result.connection

    async def _detach(self) -> None:
        async with self._runtime_lock:
            connection, self._connection = self._connection, None
            await self._runtime.dispose(connection)

    # Shutdown

    async def _shutdown(self, exit_code: int) -> None:
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self._exit_code = exit_code
        self._transition(SupervisorState.SHUTTING_DOWN)

        with anyio.CancelScope(shield=True):
            if self._cycle_scope is not None:
                self._cycle_scope.cancel()
                if self._cycle_done is not None:
                    await self._cycle_done.wait()

            self._watcher.stop()
            self._dispatcher.stop()
            await self._detach()
            if self._child is not None:
                _ = await self._processes.terminate(self._child)

        self._transition(SupervisorState.STOPPED)
        self._send.close()

    # Helpers

    def _transition(self, state: SupervisorState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        self._transitions.append((previous, state))
        self._logger.debug("state_changed", previous=previous, state=state)

    async def _status(self, message: str, level: StatusLevel = "info") -> None:
        try:
            await self._output.write_status(message, level)
        except Exception as e:  # noqa: BLE001
            self._logger.debug("status_output_error", error=str(e))
