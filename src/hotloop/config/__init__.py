"""Configuration for hotloop.

Key Components:
    - ReloadConfig: Immutable supervisor configuration
    - ReloadMode: Update strategy (auto, reload, restart)
    - LoggingConfig: Logging settings
    - load_config: Layered loading from pyproject, environment and overrides
"""

from ._defaults import (
    DEFAULT_CONFIG,
    DEFAULT_DEBOUNCE,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_WATCH_EXTENSIONS,
    DEFAULT_WATCH_PATHS,
)
from ._loader import (
    build_config,
    deep_merge,
    load_config,
    parse_env_vars,
    read_pyproject_table,
    read_toml_file,
)
from ._models import LogFormat, LoggingConfig, LogLevel, ReloadConfig, ReloadMode

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_DEBOUNCE",
    "DEFAULT_IGNORE_PATTERNS",
    "DEFAULT_WATCH_EXTENSIONS",
    "DEFAULT_WATCH_PATHS",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "ReloadConfig",
    "ReloadMode",
    "build_config",
    "deep_merge",
    "load_config",
    "parse_env_vars",
    "read_pyproject_table",
    "read_toml_file",
]
