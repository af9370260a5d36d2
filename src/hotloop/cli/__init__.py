"""Command-line interface for hotloop."""

from ._app import app, create_app, main
from ._shared import ExitCode, check_target, resolve_target

__all__ = ["ExitCode", "app", "check_target", "create_app", "main", "resolve_target"]
