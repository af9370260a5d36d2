"""Supervisor package for live-patch and restart orchestration.

This package watches source files, forwards a child process's output and
keeps the child up to date: a live patch through the child's runtime
service when possible, a full restart otherwise.

Key Components:
    - SupervisorState: Lifecycle state enumeration
    - SupervisorEvent: Events consumed by the orchestrator
    - ReloadResult: Outcome of a live patch
    - OutputSink: Protocol for output consumption
    - ConsoleOutputSink: Console output implementation
    - WatchFilter: Extension allow-list and ignore-pattern deny-list
    - FileWatcher: Debounced recursive file watching
    - RuntimeServiceClient: Connects to the child's runtime service
    - ProcessSupervisor: Child process lifecycle
    - CommandDispatcher: Interactive commands and signals
    - ReloadOrchestrator: The state machine tying them together

Example:
    >>> from hotloop.config import ReloadConfig
    >>> from hotloop.supervisor import create_orchestrator
    >>> orchestrator = create_orchestrator(ReloadConfig())
    >>> exit_code = await orchestrator.run()  # Blocks until quit
"""

from ._commands import (
    CommandDispatcher,
    LineModeStrategy,
    RawModeStrategy,
    parse_key,
    parse_line,
)
from ._factory import create_orchestrator
from ._filter import IgnorePattern, WatchFilter, normalize_path
from ._models import (
    Command,
    ReloadResult,
    SupervisorEvent,
    SupervisorEventType,
    SupervisorState,
    WatchEvent,
)
from ._orchestrator import ReloadOrchestrator, exit_status
from ._output import ConsoleOutputSink
from ._process import ChildProcess, ProcessSupervisor, find_open_port
from ._protocol import CommandStrategy, OutputSink, ReloadCapability
from ._runtime import ConnectionResult, RuntimeConnection, RuntimeServiceClient
from ._watcher import FileWatcher

__all__ = [
    "ChildProcess",
    "Command",
    "CommandDispatcher",
    "CommandStrategy",
    "ConnectionResult",
    "ConsoleOutputSink",
    "FileWatcher",
    "IgnorePattern",
    "LineModeStrategy",
    "OutputSink",
    "ProcessSupervisor",
    "RawModeStrategy",
    "ReloadCapability",
    "ReloadOrchestrator",
    "ReloadResult",
    "RuntimeConnection",
    "RuntimeServiceClient",
    "SupervisorEvent",
    "SupervisorEventType",
    "SupervisorState",
    "WatchEvent",
    "WatchFilter",
    "create_orchestrator",
    "exit_status",
    "find_open_port",
    "normalize_path",
    "parse_key",
    "parse_line",
]
