"""hotloop: live-patch and restart supervision for Python programs.

Example:
    >>> import hotloop
    >>> async def main() -> None:
    ...     ...
    >>> hotloop.start(main, watch_paths=["src"])
"""

from ._bootstrap import run_child, run_supervisor, start
from ._env import is_supervised
from .config import ReloadConfig, ReloadMode, load_config
from .exceptions import HotloopError

__all__ = [
    "HotloopError",
    "ReloadConfig",
    "ReloadMode",
    "is_supervised",
    "load_config",
    "run_child",
    "run_supervisor",
    "start",
]
