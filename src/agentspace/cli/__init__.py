"""agentspace operator CLI.

Built with Typer. Global options are handled by the app callback; each
command loads configuration and sets up logging through ``helpers``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from agentspace import __version__

from . import helpers as helpers
from .commands import cleanup, create, detect, ensure, sweep
from .helpers import set_config_file, set_log_format, set_log_level
from .output import console

app = typer.Typer(
    name="agentspace",
    help="Isolated multi-repository workspaces for coding agents",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"agentspace v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def config_callback(value: Path | None) -> Path | None:
    if value:
        set_config_file(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="AGENTSPACE_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: console or json",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            callback=config_callback,
            help="Path to agentspace YAML config",
        ),
    ] = None,
) -> None:
    """agentspace - isolated workspaces for coding agents."""


app.command()(detect)
app.command()(create)
app.command()(ensure)
app.command()(cleanup)
app.command()(sweep)


__all__ = ["app", "console", "helpers", "main"]
