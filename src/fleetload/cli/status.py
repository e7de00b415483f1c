"""``fleetload status``: print one fleet scaling sample."""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from fleetload._internal.config import DEFAULT_REGION, load_settings
from fleetload._internal.errors import ConfigError
from fleetload._internal.logging import setup_logging
from fleetload.cli.run import run_async
from fleetload.monitoring.capabilities import detect_capabilities
from fleetload.monitoring.probe import sample_with_timeout

console = Console(stderr=True)


def status_cmd(
    region: str = typer.Option(
        DEFAULT_REGION,
        "--region",
        "-r",
        help="AWS region of the fleet.",
    ),
    asg_name: str | None = typer.Option(
        None,
        "--asg-name",
        "-a",
        help="Auto Scaling Group name (auto-detected if not provided).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
) -> None:
    """Print the current desired capacity and instance count of the fleet.

    An unreadable fleet is reported as unavailable and still exits 0.
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    try:
        settings = load_settings()
    except ConfigError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        raise typer.Exit(code=1) from exc

    probe = detect_capabilities(region).build_probe(region, timeout=settings.probe_timeout)
    result = run_async(sample_with_timeout(probe, asg_name, settings.probe_timeout))
    style = "green" if result.available else "yellow"
    console.print(f"[{style}]{result.describe()}[/{style}]")
