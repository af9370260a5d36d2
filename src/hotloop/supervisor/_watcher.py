"""File watcher using watchfiles.

This module provides the FileWatcher class that subscribes to recursive
change notifications for every configured root, filters them through the
WatchFilter and collapses bursts of accepted changes into a single
callback using one shared debounce deadline.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc

from hotloop.exceptions import WatchPathError
from hotloop.utils import get_default_logger

from ._filter import WatchFilter
from ._models import WatchEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from structlog.typing import FilteringBoundLogger
    from watchfiles import Change

    from hotloop.config import ReloadConfig

    ChangeCallback = Callable[[str], Awaitable[None]]


def format_change(change: Change) -> str:
    """Return a readable name for a watchfiles change kind."""
    from watchfiles import Change as WatchChange  # noqa: PLC0415

    change_names = {
        WatchChange.added: "added",
        WatchChange.modified: "modified",
        WatchChange.deleted: "deleted",
    }
    return change_names.get(change, "unknown")


@final
class FileWatcher:
    """Watches configured roots and fires one debounced change callback.

    Every accepted event moves a single shared deadline forward; the
    callback runs once the deadline passes with no further accepted events,
    carrying the path of the event that moved it last.
    """

    __slots__ = (
        "_armed",
        "_config",
        "_deadline",
        "_filter",
        "_logger",
        "_pending_path",
        "_roots",
        "_scope",
        "_stop_event",
        "_stopped",
    )

    def __init__(
        self,
        config: ReloadConfig,
        watch_filter: WatchFilter | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            config: Supervisor configuration.
            watch_filter: Filter for raw events. Built from config if None.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._config = config
        self._filter = watch_filter or WatchFilter.from_config(config)
        self._logger = logger or get_default_logger()
        self._roots: list[str] = []
        self._scope: anyio.CancelScope | None = None
        self._stop_event: anyio.Event | None = None
        self._armed: anyio.Event | None = None
        self._pending_path: str | None = None
        self._deadline: float = 0.0
        self._stopped = False

    @property
    def roots(self) -> list[str]:
        """Return the roots that are being watched."""
        return list(self._roots)

    @property
    def is_running(self) -> bool:
        """Return True while subscriptions are active."""
        return self._scope is not None and not self._stopped

    def existing_roots(self) -> list[str]:
        """Return the configured roots that exist as directories.

        Raises:
            WatchPathError: If none of the configured roots exist.
        """
        roots: list[str] = []
        for path in self._config.watch_paths:
            if os.path.isdir(path):
                roots.append(os.path.abspath(path))
            else:
                self._logger.warning("watch_path_missing", path=path)
        if not roots:
            msg = (
                "No valid watch paths found: "
                f"{', '.join(self._config.watch_paths)} do not exist"
            )
            raise WatchPathError(msg, paths=self._config.watch_paths)
        return roots

    async def start(
        self,
        task_group: anyio.abc.TaskGroup,
        on_changed: ChangeCallback,
    ) -> None:
        """Subscribe to every existing root and begin debouncing.

        Args:
            task_group: Task group that hosts the watcher tasks.
            on_changed: Called with the last accepted path after each
                quiet period.

        Raises:
            WatchPathError: If none of the configured roots exist.
        """
        self._roots = self.existing_roots()
        self._stopped = False
        self._stop_event = anyio.Event()
        self._armed = anyio.Event()
        _ = await task_group.start(self._run, on_changed)
        self._logger.info("watcher_started", roots=self._roots)

    async def _run(
        self,
        on_changed: ChangeCallback,
        *,
        task_status: anyio.abc.TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        with anyio.CancelScope() as scope:
            self._scope = scope
            async with anyio.create_task_group() as tg:
                for root in self._roots:
                    tg.start_soon(self._watch_root, root)
                tg.start_soon(self._debounce_loop, on_changed)
                task_status.started()

    async def _watch_root(self, root: str) -> None:
        from watchfiles import awatch  # noqa: PLC0415

        try:
            async for changes in awatch(
                root,
                recursive=True,
                watch_filter=None,
                stop_event=self._stop_event,
                step=50,
            ):
                for change, changed_path in changes:
                    self.handle_event(
                        WatchEvent(path=changed_path, change=format_change(change))
                    )
        except (OSError, RuntimeError) as e:
            # One broken subscription must not take the other roots down
            self._logger.error("watcher_error", root=root, error=str(e))

    def handle_event(self, event: WatchEvent) -> bool:
        """Filter a raw event and move the debounce deadline if accepted.

        Args:
            event: The raw filesystem event.

        Returns:
            True if the event was accepted.
        """
        if self._stopped:
            return False

        verbose = self._config.verbose
        if not self._filter.has_watched_extension(event.path):
            if verbose:
                self._logger.debug("skip_extension", path=event.path)
            return False
        if self._filter.is_ignored(event.path):
            if verbose:
                self._logger.debug("skip_ignored", path=event.path)
            return False

        if verbose:
            self._logger.debug("change_accepted", path=event.path, change=event.change)
        self._pending_path = event.path
        self._deadline = anyio.current_time() + self._config.debounce
        if self._armed is not None:
            self._armed.set()
        return True

    async def _debounce_loop(self, on_changed: ChangeCallback) -> None:
        while True:
            armed = self._armed
            if armed is None:
                return
            await armed.wait()
            while (remaining := self._deadline - anyio.current_time()) > 0:
                await anyio.sleep(remaining)

            path = self._pending_path
            self._pending_path = None
            self._armed = anyio.Event()
            if path is not None and not self._stopped:
                self._logger.debug("change_debounced", path=path)
                await on_changed(path)

    def stop(self) -> None:
        """Cancel the debounce timer and every subscription.

        Safe to call multiple times and before start.
        """
        if self._stopped:
            return
        self._stopped = True
        self._pending_path = None
        if self._stop_event is not None:
            self._stop_event.set()
        if self._scope is not None:
            self._scope.cancel()
        self._logger.debug("watcher_stopped")
