"""Default configuration values.

This module defines the built-in default configuration values that are used
when no other configuration sources provide values.
"""

from typing import Any

DEFAULT_WATCH_PATHS: tuple[str, ...] = (".",)
"""Watch the project root when no paths are configured."""

DEFAULT_WATCH_EXTENSIONS: tuple[str, ...] = (".py",)

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/",
    ".hg/",
    ".venv/",
    "venv/",
    "__pycache__/",
    "build/",
    "dist/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".tox/",
    "*.egg-info",
    "uv.lock",
    "poetry.lock",
    "*.log",
    "*.tmp",
)
"""Version control, build output and lock files that never trigger a reload."""

DEFAULT_DEBOUNCE: float = 0.5

DEFAULT_CONFIG: dict[str, Any] = {  # pyright: ignore[reportExplicitAny]
    "watch_paths": list(DEFAULT_WATCH_PATHS),
    "watch_extensions": list(DEFAULT_WATCH_EXTENSIONS),
    "ignore_patterns": list(DEFAULT_IGNORE_PATTERNS),
    "debounce": DEFAULT_DEBOUNCE,
    "verbose": False,
    "mode": "auto",
    "runtime_port": 0,
    "startup_timeout": 1.0,
    "shutdown_timeout": 2.0,
    "reload_timeout": 10.0,
    "connect_timeout": 2.0,
    "logging": {
        "level": "warning",
        "format": "text",
        "file": "",
    },
}
