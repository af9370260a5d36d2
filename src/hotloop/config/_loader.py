# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""Configuration loading and merging.

Sources, lowest to highest precedence:
- Built-in defaults
- ``[tool.hotloop]`` in ``pyproject.toml`` (or an explicit TOML file)
- ``HOTLOOP_*`` environment variables
- Explicit overrides (CLI flags or ``start()`` keyword arguments)
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from hotloop.exceptions import ConfigLoadError, ConfigValidationError

from ._defaults import DEFAULT_CONFIG
from ._models import ReloadConfig

ENV_PREFIX = "HOTLOOP_"

# Process-control variables that share the prefix but are not config keys
_RESERVED_ENV_KEYS: frozenset[str] = frozenset(
    {"DEV_CHILD", "DEBUG", "STRICT_CONFIG"}
)

# Short spellings for nested keys
_ENV_ALIASES: dict[str, str] = {"LOG_LEVEL": "LOGGING__LEVEL"}

_PATH_LIST_KEYS: frozenset[str] = frozenset({"watch_paths"})
_COMMA_LIST_KEYS: frozenset[str] = frozenset({"watch_extensions", "ignore_patterns"})


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content as dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigLoadError: If the file cannot be parsed.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file {path}: {e}"
        raise ConfigLoadError(msg, path=path) from e


def read_pyproject_table(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Return the ``[tool.hotloop]`` table of a pyproject file.

    Missing files and missing tables both yield an empty dict.
    """
    if not path.is_file():
        return {}
    data = read_toml_file(path)
    tool = data.get("tool", {})
    table = tool.get("hotloop", {}) if isinstance(tool, dict) else {}
    return table if isinstance(table, dict) else {}


def deep_merge(
    base: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    override: dict[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Deep merge two configuration dictionaries.

    Merges `override` into `base`, returning a new dictionary. Neither input
    is modified. Dictionaries merge recursively; lists and scalars from
    `override` replace the base value.
    """
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]

    for key in base.keys() | override.keys():
        if key not in override:
            result[key] = copy_value(base[key])
        elif key not in base:
            result[key] = copy_value(override[key])
        elif isinstance(base[key], dict) and isinstance(override[key], dict):
            result[key] = deep_merge(base[key], override[key])
        else:
            result[key] = copy_value(override[key])

    return result


def copy_value(value: Any) -> Any:  # pyright: ignore[reportExplicitAny]
    """Create a deep copy of a dict/list configuration value."""
    if isinstance(value, dict):
        return {k: copy_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [copy_value(item) for item in value]
    return value


def parse_env_vars(
    environ: dict[str, str] | None = None,
    prefix: str = ENV_PREFIX,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Parse environment variables into a config dictionary.

    ``HOTLOOP_DEBOUNCE=0.2`` sets ``debounce``; a double underscore nests,
    so ``HOTLOOP_LOGGING__LEVEL=debug`` sets ``logging.level``, as does its
    alias ``HOTLOOP_LOG_LEVEL``.
    ``HOTLOOP_WATCH_PATHS`` is split on ``os.pathsep``; extensions and
    ignore patterns are split on commas.

    Args:
        environ: Environment mapping. Uses ``os.environ`` if None.
        prefix: Environment variable prefix.

    Returns:
        Dictionary of parsed config values with nested structure.
    """
    source = os.environ if environ is None else environ
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]

    for key, value in source.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        if not config_key or config_key in _RESERVED_ENV_KEYS:
            continue
        if config_key in _ENV_ALIASES:
            # The explicit nested spelling wins over its alias
            if prefix + _ENV_ALIASES[config_key] in source:
                continue
            config_key = _ENV_ALIASES[config_key]

        parts = config_key.lower().split("__")
        leaf = parts[-1]
        parsed: Any  # pyright: ignore[reportExplicitAny]
        if leaf in _PATH_LIST_KEYS:
            parsed = [p for p in value.split(os.pathsep) if p]
        elif leaf in _COMMA_LIST_KEYS:
            parsed = [p.strip() for p in value.split(",") if p.strip()]
        else:
            # pydantic coerces "0.2", "true" and "debug" into the field types
            parsed = value

        target = result
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[leaf] = parsed

    return result


def build_config(data: dict[str, Any]) -> ReloadConfig:  # pyright: ignore[reportExplicitAny]
    """Validate a merged config dictionary into a ReloadConfig.

    Raises:
        ConfigValidationError: If a value is invalid.
    """
    try:
        return ReloadConfig.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        key = ".".join(str(loc) for loc in error["loc"])
        msg = f"Invalid configuration value for '{key}': {error['msg']}"
        raise ConfigValidationError(
            msg,
            key=key,
            value=error.get("input"),
            expected=error["type"],
        ) from e


def load_config(
    *,
    config_path: Path | None = None,
    project_root: Path | None = None,
    overrides: dict[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
    include_env: bool = True,
    environ: dict[str, str] | None = None,
) -> ReloadConfig:
    """Load configuration from all sources.

    Args:
        config_path: Explicit TOML file whose top-level table is the config.
            Takes the place of ``pyproject.toml`` discovery.
        project_root: Directory to look for ``pyproject.toml`` in (default cwd).
        overrides: Highest-precedence values; ``None`` entries are ignored.
        include_env: Whether to apply ``HOTLOOP_*`` environment variables.
        environ: Environment mapping for env parsing (default ``os.environ``).

    Returns:
        The validated configuration.

    Raises:
        ConfigLoadError: If a config file cannot be read or parsed.
        ConfigValidationError: If the merged configuration is invalid.
    """
    merged = copy_value(DEFAULT_CONFIG)

    if config_path is not None:
        try:
            file_values = read_toml_file(config_path)
        except OSError as e:
            msg = f"Cannot read config file {config_path}: {e}"
            raise ConfigLoadError(msg, path=config_path) from e
    else:
        root = project_root if project_root is not None else Path.cwd()
        file_values = read_pyproject_table(root / "pyproject.toml")
    merged = deep_merge(merged, file_values)

    if include_env:
        merged = deep_merge(merged, parse_env_vars(environ))

    if overrides:
        explicit = {k: v for k, v in overrides.items() if v is not None}
        merged = deep_merge(merged, explicit)

    return build_config(merged)
