"""Two-phase bootstrap.

The same program runs twice. Without the child marker it becomes the
supervisor and relaunches itself as a child; with the marker it runs the
program next to the runtime service.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import anyio

from hotloop._env import is_supervised
from hotloop.config import ReloadConfig, load_config
from hotloop.runtime import RuntimeService
from hotloop.supervisor import create_orchestrator
from hotloop.utils import create_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from hotloop.config import ReloadMode

    Script = Callable[[], Awaitable[object]]


def start(  # noqa: PLR0913
    script: Script,
    *,
    watch_paths: Sequence[str] | None = None,
    watch_extensions: Sequence[str] | None = None,
    ignore_patterns: Sequence[str] | None = None,
    debounce: float | None = None,
    verbose: bool | None = None,
    mode: ReloadMode | str | None = None,
    config: ReloadConfig | None = None,
) -> None:
    """Run ``script`` under supervision.

    In the supervisor this call never returns: it exits with the supervisor's
    exit code. In the supervised child it runs ``script`` and returns when
    the script finishes.

    Keyword arguments left as None fall back to ``[tool.hotloop]`` in
    ``pyproject.toml``, ``HOTLOOP_*`` environment variables and the defaults
    (watch ``.``, extension ``.py``, debounce ``0.5``, mode ``auto``).

    Args:
        script: Zero-argument async callable, the program to supervise.
        watch_paths: Root directories to watch.
        watch_extensions: Extensions that trigger a reload.
        ignore_patterns: Root-relative patterns that never trigger.
        debounce: Quiet period in seconds.
        verbose: Log filtering decisions and diagnostics.
        mode: ``auto``, ``reload`` or ``restart``.
        config: A complete configuration; keyword arguments are ignored.

    Raises:
        ConfigError: If the configuration is invalid or no watch path exists.
    """
    if config is None:
        config = load_config(
            overrides={
                "watch_paths": watch_paths,
                "watch_extensions": watch_extensions,
                "ignore_patterns": ignore_patterns,
                "debounce": debounce,
                "verbose": verbose,
                "mode": mode,
            }
        )

    if is_supervised():
        anyio.run(run_child, script, config)
        return

    sys.exit(run_supervisor(config))


def run_supervisor(config: ReloadConfig, *, command: Sequence[str] | None = None) -> int:
    """Supervise a relaunched copy of this program until quit.

    Args:
        config: Supervisor configuration.
        command: Child command line. Relaunches the current program if None.

    Returns:
        The supervisor's exit code.

    Raises:
        WatchPathError: If none of the watch paths exist.
    """

    async def supervise() -> int:
        orchestrator = create_orchestrator(config, command=command)
        return await orchestrator.run()

    return anyio.run(supervise)


async def run_child(script: Script, config: ReloadConfig) -> None:
    """Run the program next to the runtime service.

    Returns when the program finishes; the service stops with it.
    """
    logger = create_logger(
        level=config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.file,
        verbose=config.verbose,
    )
    service = RuntimeService(config, logger=logger)
    async with anyio.create_task_group() as tg:
        _ = await tg.start(service.serve)
        _ = await script()
        tg.cancel_scope.cancel()
