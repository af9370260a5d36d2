"""Wiring of the supervisor components."""

from __future__ import annotations

from typing import TYPE_CHECKING

from hotloop.utils import create_logger

from ._commands import CommandDispatcher
from ._filter import WatchFilter
from ._orchestrator import ReloadOrchestrator
from ._output import ConsoleOutputSink
from ._process import ProcessSupervisor
from ._runtime import RuntimeServiceClient
from ._watcher import FileWatcher

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import TextIO

    from structlog.typing import FilteringBoundLogger

    from hotloop.config import ReloadConfig

    from ._protocol import OutputSink


def create_orchestrator(
    config: ReloadConfig,
    *,
    command: Sequence[str] | None = None,
    output: OutputSink | None = None,
    stdin: TextIO | None = None,
    logger: FilteringBoundLogger | None = None,
) -> ReloadOrchestrator:
    """Build an orchestrator with the default components.

    Args:
        config: Supervisor configuration.
        command: Child command line. Relaunches the current program if None.
        output: Sink for child output and status. Uses ConsoleOutputSink if None.
        stdin: Input stream for interactive commands. Uses ``sys.stdin`` if None.
        logger: Structured logger. Built from ``config.logging`` if None.

    Returns:
        A ready-to-run orchestrator.
    """
    if logger is None:
        logger = create_logger(
            level=config.logging.level,
            log_format=config.logging.format,
            log_file=config.logging.file,
            verbose=config.verbose,
        )
    sink: OutputSink = output or ConsoleOutputSink()

    return ReloadOrchestrator(
        config,
        watcher=FileWatcher(config, WatchFilter.from_config(config), logger=logger),
        dispatcher=CommandDispatcher(
            stdin=stdin, verbose=config.verbose, logger=logger
        ),
        processes=ProcessSupervisor(
            config, command=command, output=sink, logger=logger
        ),
        runtime=RuntimeServiceClient(
            connect_timeout=config.connect_timeout,
            reload_timeout=config.reload_timeout,
            logger=logger,
        ),
        output=sink,
        logger=logger,
    )
