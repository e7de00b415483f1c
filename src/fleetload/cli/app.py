"""Main Typer application — entry point for the ``fleetload`` CLI."""

from __future__ import annotations

import typer

from fleetload import __version__
from fleetload.cli.run import run_cmd
from fleetload.cli.status import status_cmd

app = typer.Typer(
    name="fleetload",
    help="Drive HTTP load against an auto-scaled fleet and watch it scale.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)

app.command("run", help="Run a load test against a target.")(run_cmd)
app.command("status", help="Print the current fleet scaling state.")(status_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"fleetload {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """fleetload — load-test an auto-scaled endpoint."""
