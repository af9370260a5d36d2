"""Data models for the supervisor system.

This module defines the core data types for reload supervision:
- SupervisorState: Lifecycle states owned by the orchestrator
- SupervisorEventType: Kinds of events fed into the orchestrator
- SupervisorEvent: Immutable event records
- WatchEvent: A single filesystem change
- ReloadResult: Outcome of a live-patch attempt
- Command: Interactive operator commands
"""

import time
from dataclasses import dataclass, field
from enum import StrEnum


class SupervisorState(StrEnum):
    """Supervisor lifecycle states.

    The orchestrator is in exactly one state at a time:
    - STARTING: Spawning the first child and installing listeners
    - RUNNING: Child is running, waiting for triggers
    - RELOADING: A live patch is in flight
    - RESTARTING: The child is being replaced
    - SHUTTING_DOWN: Tearing everything down
    - STOPPED: Supervision is over
    """

    STARTING = "starting"
    RUNNING = "running"
    RELOADING = "reloading"
    RESTARTING = "restarting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


BUSY_STATES: frozenset[SupervisorState] = frozenset(
    {SupervisorState.RELOADING, SupervisorState.RESTARTING}
)
"""States in which new reload/restart triggers are dropped."""

EXPECTED_EXIT_STATES: frozenset[SupervisorState] = frozenset(
    {
        SupervisorState.RELOADING,
        SupervisorState.RESTARTING,
        SupervisorState.SHUTTING_DOWN,
        SupervisorState.STOPPED,
    }
)
"""States in which a child exit is not a fatal child loss."""


class SupervisorEventType(StrEnum):
    """Types of events delivered to the orchestrator.

    - FILE_CHANGED: The file watcher fired after its debounce window
    - RELOAD_REQUESTED: Operator asked for a reload
    - RESTART_REQUESTED: Operator asked for a restart
    - QUIT_REQUESTED: Operator asked to quit
    - SIGNAL_RECEIVED: SIGINT/SIGTERM (or Ctrl+C in raw mode) arrived
    - CHILD_EXITED: The child process exited
    - RUNTIME_ANNOUNCED: The child announced its runtime service address
    """

    FILE_CHANGED = "file_changed"
    RELOAD_REQUESTED = "reload_requested"
    RESTART_REQUESTED = "restart_requested"
    QUIT_REQUESTED = "quit_requested"
    SIGNAL_RECEIVED = "signal_received"
    CHILD_EXITED = "child_exited"
    RUNTIME_ANNOUNCED = "runtime_announced"


@dataclass(frozen=True, slots=True)
class SupervisorEvent:
    """Immutable event record consumed by the orchestrator.

    Attributes:
        event_type: Kind of event.
        path: Changed file path for FILE_CHANGED.
        generation: Child generation for CHILD_EXITED and RUNTIME_ANNOUNCED.
        exit_code: Exit code for CHILD_EXITED.
        address: Runtime service address for RUNTIME_ANNOUNCED.
        signal_name: Signal name for SIGNAL_RECEIVED.
        timestamp: Monotonic time the event was created.
    """

    event_type: SupervisorEventType
    path: str | None = None
    generation: int | None = None
    exit_code: int | None = None
    address: str | None = None
    signal_name: str | None = None
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A single filesystem change before filtering and debouncing.

    Attributes:
        path: Absolute path of the changed file.
        change: Change kind ("added", "modified", "deleted").
        timestamp: Monotonic time the change was observed.
    """

    path: str
    change: str = "modified"
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True, slots=True)
class ReloadResult:
    """Outcome of a live-patch attempt.

    Only ``success`` drives decisions; the rest is diagnostic.

    Attributes:
        success: Whether code was updated with state preserved.
        detail: Optional human-readable failure reason.
        reloaded: Names of modules that were re-imported.
    """

    success: bool
    detail: str | None = None
    reloaded: tuple[str, ...] = ()


class Command(StrEnum):
    """Interactive operator commands."""

    RELOAD = "reload"
    RESTART = "restart"
    QUIT = "quit"
    INTERRUPT = "interrupt"
