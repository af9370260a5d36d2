"""In-process module reloading.

The reloader tracks the source files of every loaded module that lives
under a watch root, has a watched extension and is not ignored. A reload
re-imports the modules whose files changed since the last scan.
"""

from __future__ import annotations

import importlib
import os
import sys
import time
from typing import TYPE_CHECKING, final

from hotloop.exceptions import ModuleReloadError
from hotloop.utils import get_default_logger

if TYPE_CHECKING:
    from types import ModuleType

    from structlog.typing import FilteringBoundLogger

    from hotloop.supervisor._filter import WatchFilter

_OWN_PACKAGE = "hotloop"


def module_file(module: ModuleType) -> str | None:
    """Return the absolute source path of a module, if it has one."""
    path = getattr(module, "__file__", None)
    if not isinstance(path, str) or not path:
        return None
    return os.path.abspath(path)


@final
class ModuleReloader:
    """Re-imports changed modules inside the running process.

    A changed ``__main__`` module cannot be reloaded in place; it and any
    import error are reported as ModuleReloadError so the supervisor falls
    back to a restart.
    """

    __slots__ = ("_filter", "_last_scan", "_logger", "_mtimes")

    def __init__(
        self,
        watch_filter: WatchFilter,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the reloader and take the first snapshot.

        Args:
            watch_filter: Decides which module files are tracked.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._filter = watch_filter
        self._logger = logger or get_default_logger()
        self._mtimes: dict[str, int] = {}
        self._last_scan = time.time_ns()
        self.snapshot()

    def tracked_modules(self) -> dict[str, str]:
        """Return the currently loaded modules that are tracked, by name."""
        tracked: dict[str, str] = {}
        for name, module in list(sys.modules.items()):
            if name == _OWN_PACKAGE or name.startswith(f"{_OWN_PACKAGE}."):
                continue
            path = module_file(module)
            if path is None or not self._filter.is_under_root(path):
                continue
            if self._filter.should_process(path):
                tracked[name] = path
        return tracked

    def snapshot(self) -> None:
        """Record the modification time of every tracked module."""
        self._mtimes = {}
        for name, path in self.tracked_modules().items():
            try:
                self._mtimes[name] = os.stat(path).st_mtime_ns
            except OSError:
                continue
        self._last_scan = time.time_ns()

    def changed_modules(self) -> list[str]:
        """Return the names of tracked modules whose source changed, sorted.

        A module loaded after the last scan counts as changed when its file
        was modified after that scan.

        Raises:
            ModuleReloadError: If a tracked source file has disappeared.
        """
        changed: list[str] = []
        for name, path in self.tracked_modules().items():
            try:
                mtime = os.stat(path).st_mtime_ns
            except OSError as e:
                msg = f"Source of {name} is no longer readable: {e}"
                raise ModuleReloadError(msg, module=name) from e
            previous = self._mtimes.get(name)
            if previous is None:
                if mtime > self._last_scan:
                    changed.append(name)
            elif mtime != previous:
                changed.append(name)
        return sorted(changed)

    def reload(self) -> tuple[str, ...]:
        """Re-import every changed module in name order.

        Returns:
            Names of the modules that were reloaded.

        Raises:
            ModuleReloadError: If the entry module changed or a module fails
                to re-import.
        """
        changed = self.changed_modules()
        if "__main__" in changed:
            msg = "The entry module changed and cannot be reloaded in place"
            raise ModuleReloadError(msg, module="__main__")

        for name in changed:
            module = sys.modules.get(name)
            if module is None:
                continue
            try:
                _ = importlib.reload(module)
            except Exception as e:
                self._logger.warning("module_reload_failed", module=name, error=str(e))
                msg = f"Failed to reload {name}: {type(e).__name__}: {e}"
                raise ModuleReloadError(msg, module=name) from e
            self._logger.debug("module_reloaded", module=name)

        self.snapshot()
        return tuple(changed)
