"""Environment variables exchanged between supervisor and child."""

import os

CHILD_ENV_VAR = "HOTLOOP_DEV_CHILD"
"""Set in the child's environment so a relaunch runs the program directly."""

RUNTIME_PORT_ENV_VAR = "HOTLOOP_RUNTIME_PORT"
"""Port the child's runtime service binds, stable across restarts."""


def is_supervised() -> bool:
    """Return True when running as the supervised child."""
    return os.environ.get(CHILD_ENV_VAR) == "1"


def runtime_port_from_env(default: int = 0) -> int:
    """Return the runtime service port handed down by the supervisor."""
    value = os.environ.get(RUNTIME_PORT_ENV_VAR, "")
    try:
        return int(value)
    except ValueError:
        return default
