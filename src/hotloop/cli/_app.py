"""The command-line interface for hotloop."""
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing

from pathlib import Path
from typing import Annotated, Literal

import anyio
from cyclopts import App, Parameter
from rich.console import Console

from hotloop._bootstrap import run_child, run_supervisor
from hotloop._env import is_supervised
from hotloop.config import load_config
from hotloop.exceptions import ConfigError, TargetError

from ._shared import (
    ExitCode,
    check_target,
    exit_with_error,
    format_json,
    format_toml,
    format_yaml,
    resolve_target,
)

ModeChoice = Literal["auto", "reload", "restart"]
FormatChoice = Literal["toml", "json", "yaml"]

_HELP = "Keep a running Python program up to date with live patches and restarts."


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Create the hotloop CLI application.

    Args:
        console: Console for regular output.
        error_console: Console for errors.
        exit_on_error: Whether cyclopts exits on parse errors.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="hotloop",
        help=_HELP,
        help_on_error=True,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.command
    def run(  # noqa: PLR0913  # pyright: ignore[reportUnusedFunction]
        target: Annotated[
            str, Parameter(help="Async function to run, as MODULE:ATTR.")
        ],
        *,
        watch: Annotated[
            list[str] | None,
            Parameter(name="--watch", help="Directory to watch (repeatable)."),
        ] = None,
        ext: Annotated[
            list[str] | None,
            Parameter(name="--ext", help="Extension that triggers (repeatable)."),
        ] = None,
        ignore: Annotated[
            list[str] | None,
            Parameter(name="--ignore", help="Pattern that never triggers (repeatable)."),
        ] = None,
        debounce: Annotated[
            float | None, Parameter(help="Quiet period in seconds.")
        ] = None,
        mode: Annotated[
            ModeChoice | None, Parameter(help="Update strategy.")
        ] = None,
        verbose: Annotated[
            bool, Parameter(help="Log filtering decisions and diagnostics.")
        ] = False,
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to a TOML config file.")
        ] = None,
    ) -> None:
        """Run an async function under supervision.

        Args:
            target: The program, as MODULE:ATTR.
            watch: Directories to watch.
            ext: Extensions that trigger a reload.
            ignore: Root-relative patterns that never trigger.
            debounce: Quiet period in seconds.
            mode: auto, reload or restart.
            verbose: Log filtering decisions and diagnostics.
            config: Path to a TOML config file.
        """
        try:
            loaded = load_config(
                config_path=config,
                overrides={
                    "watch_paths": watch,
                    "watch_extensions": ext,
                    "ignore_patterns": ignore,
                    "debounce": debounce,
                    "mode": mode,
                    "verbose": verbose or None,
                },
            )
        except ConfigError as e:
            exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=error_console)

        if is_supervised():
            try:
                script = resolve_target(target)
            except TargetError as e:
                exit_with_error(str(e), ExitCode.TARGET_ERROR, console=error_console)
            anyio.run(run_child, script, loaded)
            return

        try:
            check_target(target)
        except TargetError as e:
            exit_with_error(str(e), ExitCode.TARGET_ERROR, console=error_console)

        try:
            exit_code = run_supervisor(loaded)
        except ConfigError as e:
            exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=error_console)
        raise SystemExit(exit_code)

    @app.command(name="config")
    def show_config(  # pyright: ignore[reportUnusedFunction]
        *,
        format: Annotated[  # noqa: A002
            FormatChoice, Parameter(name="--format", help="Output format.")
        ] = "toml",
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to a TOML config file.")
        ] = None,
    ) -> None:
        """Print the resolved configuration.

        Args:
            format: Output format.
            config: Path to a TOML config file.
        """
        try:
            loaded = load_config(config_path=config)
        except ConfigError as e:
            exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=error_console)

        data = loaded.model_dump(mode="json")
        if format == "json":
            output = format_json(data)
        elif format == "yaml":
            output = format_yaml(data)
        else:
            output = format_toml(data)
        console.print(output, markup=False, highlight=False, soft_wrap=True)

    return app


app = create_app()


def main() -> None:
    """Default entrypoint for the `hotloop` CLI."""
    app = create_app()
    app()


if __name__ == "__main__":
    main()
