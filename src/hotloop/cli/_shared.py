# pyright: reportExplicitAny=false
"""Shared CLI utilities.

This module provides the pieces the commands have in common:
- Standardized exit codes
- Output formatters for configuration data
- Program target resolution
"""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import os
import sys
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Never

from hotloop.exceptions import TargetError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rich.console import Console

# Type alias for formattable data - uses Any to match library signatures
FormattableData = dict[str, Any]


class ExitCode(IntEnum):
    """Exit codes of the hotloop CLI besides the supervised child's own."""

    SUCCESS = 0
    FAILURE = 1
    CONFIG_ERROR = 2
    TARGET_ERROR = 3


def format_toml(data: FormattableData) -> str:
    """Format data as TOML."""
    import tomli_w

    return tomli_w.dumps(data)


def format_json(data: FormattableData, *, indent: bool = True) -> str:
    """Format data as JSON.

    Args:
        data: Dictionary to format as JSON.
        indent: Whether to pretty-print with indentation.

    Returns:
        JSON-formatted string representation.
    """
    import orjson

    options = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(data, option=options).decode("utf-8")


def format_yaml(data: FormattableData) -> str:
    """Format data as YAML."""
    import yaml

    return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True)


def get_error_console() -> Console:
    """Get a Rich console configured for error output to stderr."""
    from rich.console import Console

    return Console(stderr=True)


def exit_with_error(
    message: str,
    code: ExitCode = ExitCode.FAILURE,
    *,
    console: Console | None = None,
) -> Never:
    """Print an error message and exit with the specified code.

    Args:
        message: The error message to display.
        code: The exit code to use.
        console: Optional Rich console for output. If not provided,
            a new stderr console will be created.

    Raises:
        SystemExit: Always raised with the specified exit code.
    """
    if console is None:
        console = get_error_console()

    console.print(f"[red]Error:[/red] {message}", highlight=False)
    raise SystemExit(code)


def _split_target(target: str) -> tuple[str, str]:
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        msg = f"Invalid target '{target}': expected MODULE:ATTR"
        raise TargetError(msg, target=target)
    return module_name, attr_path


def ensure_cwd_importable() -> None:
    """Put the working directory on ``sys.path`` like ``python -m`` does."""
    cwd = os.getcwd()
    if cwd not in sys.path and "" not in sys.path:
        sys.path.insert(0, cwd)


def check_target(target: str) -> None:
    """Check that a ``module:attr`` target's module exists, without importing it.

    Raises:
        TargetError: If the target is malformed or the module is not found.
    """
    module_name, _ = _split_target(target)
    ensure_cwd_importable()
    try:
        spec = importlib.util.find_spec(module_name)
    except (ImportError, ValueError) as e:
        msg = f"Cannot find module '{module_name}': {e}"
        raise TargetError(msg, target=target) from e
    if spec is None:
        msg = f"Cannot find module '{module_name}'"
        raise TargetError(msg, target=target)


def resolve_target(target: str) -> Callable[[], Awaitable[object]]:
    """Import a ``module:attr`` target and return the async callable.

    Raises:
        TargetError: If the target cannot be imported or is not an async
            callable.
    """
    module_name, attr_path = _split_target(target)
    ensure_cwd_importable()
    try:
        obj: object = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Cannot import module '{module_name}': {e}"
        raise TargetError(msg, target=target) from e

    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError as e:
            msg = f"Module '{module_name}' has no attribute '{attr_path}'"
            raise TargetError(msg, target=target) from e

    if not inspect.iscoroutinefunction(obj):
        msg = f"Target '{target}' is not an async function"
        raise TargetError(msg, target=target)
    return obj  # pyright: ignore[reportReturnType]
