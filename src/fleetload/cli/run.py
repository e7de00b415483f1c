"""``fleetload run``: reachability check, mode selection and the load test."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleetload._internal.config import DEFAULT_REGION, TestConfig, load_settings
from fleetload._internal.errors import ConfigError, ReachabilityError
from fleetload._internal.logging import get_logger, setup_logging
from fleetload.engine.driver import TestDriver, TestMode
from fleetload.monitoring.capabilities import detect_capabilities

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

    from fleetload.engine.driver import DriverReport, PhaseResult, ProgressUpdate
    from fleetload.metrics.models import AggregateStats
    from fleetload.monitoring.capabilities import Capabilities

console = Console(stderr=True)
logger = get_logger("cli.run")

T = TypeVar("T")

_MODE_ALIASES = {
    "basic": [TestMode.BASIC],
    "benchmark": [TestMode.BENCHMARK],
    "ramp": [TestMode.RAMP],
    "all": list(TestMode),
}


# ---------------------------------------------------------------------------
# Mode selection
# ---------------------------------------------------------------------------


def menu_choices(capabilities: Capabilities) -> list[tuple[str, list[TestMode]]]:
    """Return the numbered menu entries offered for *capabilities*.

    Args:
        capabilities: Detected optional tooling.

    Returns:
        ``(label, modes)`` pairs; entry *n* of the menu is index ``n - 1``.
    """
    if capabilities.has_benchmark_tool:
        return [
            ("Basic load test", [TestMode.BASIC]),
            ("Advanced load test (Apache Bench)", [TestMode.BENCHMARK]),
            ("Gradual ramp-up test", [TestMode.RAMP]),
            ("All tests", [TestMode.BASIC, TestMode.BENCHMARK, TestMode.RAMP]),
        ]
    return [
        ("Basic load test", [TestMode.BASIC]),
        ("Gradual ramp-up test", [TestMode.RAMP]),
        ("Both tests", [TestMode.BASIC, TestMode.RAMP]),
    ]


def _parse_mode(mode: str, capabilities: Capabilities) -> list[TestMode]:
    modes = _MODE_ALIASES.get(mode.lower())
    if modes is None:
        msg = f"Unknown mode: {mode}. Choose from: {', '.join(_MODE_ALIASES)}"
        raise typer.BadParameter(msg)
    if mode.lower() == "all" and not capabilities.has_benchmark_tool:
        return [TestMode.BASIC, TestMode.RAMP]
    return modes


def _prompt_modes(capabilities: Capabilities) -> list[TestMode]:
    choices = menu_choices(capabilities)
    console.print("Choose test type:")
    for number, (label, _modes) in enumerate(choices, start=1):
        console.print(f"{number}) {label}")
    console.print()

    choice = typer.prompt(f"Enter choice (1-{len(choices)})", default="", show_default=False)
    try:
        index = int(choice) - 1
    except ValueError:
        index = -1
    if not 0 <= index < len(choices):
        console.print("[red][ERROR][/red] Invalid choice")
        raise typer.Exit(code=1)
    return choices[index][1]


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _print_progress(update: ProgressUpdate, ramp_steps: int) -> None:
    if update.step is not None:
        console.print(
            f"[blue][INFO][/blue] Step {update.step.index}/{ramp_steps} completed "
            f"({update.step.target_concurrency} workers) | {update.scaling.describe()}"
        )
        return
    console.print(
        f"[blue][INFO][/blue] Progress: {update.percent}% "
        f"({update.elapsed:.0f}/{update.total:.0f} seconds) | "
        f"{update.scaling.describe()}"
    )


def _phase_table(phase: PhaseResult) -> Table:
    table = Table(
        title=f"{phase.mode.value.capitalize()} Test Results",
        show_header=True,
        header_style="bold green" if phase.succeeded else "bold red",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Duration", f"{phase.elapsed_seconds:.1f}s")

    if phase.error is not None:
        table.add_row("Status", f"[red]failed: {phase.error}[/red]")
        return table

    rate = phase.requests_per_second
    if phase.benchmark is not None:
        bench = phase.benchmark
        table.add_row("Complete Requests", str(bench.complete_requests))
        table.add_row("Requests/sec", f"{bench.requests_per_second:.2f}")
        table.add_row("Time per Request", f"{bench.time_per_request_ms:.2f}ms")
        table.add_row("p50 Latency", f"{bench.latency_p50_ms:.1f}ms")
        table.add_row("p95 Latency", f"{bench.latency_p95_ms:.1f}ms")
        table.add_row("p99 Latency", f"{bench.latency_p99_ms:.1f}ms")
        table.add_row("Failed Requests", str(bench.failed_requests))
        return table

    stats = phase.stats
    if stats is None:
        return table
    table.add_row("Requests Issued", str(stats.requests))
    table.add_row("Requests/sec", "n/a" if rate is None else f"{rate:.1f}")
    table.add_row("Successes", str(stats.successes))
    table.add_row("Failures", str(stats.failures))
    table.add_row("  HTTP Errors", str(stats.http_errors))
    table.add_row("  Timeouts", str(stats.timeouts))
    table.add_row("  Transport Errors", str(stats.transport_errors))
    table.add_row("Latency min/avg/max", _latency_triplet(stats))
    table.add_row("p95 Latency", f"{stats.latency_p95_ms:.1f}ms")
    table.add_row("Error Rate", f"{stats.error_rate * 100:.2f}%")
    return table


def _latency_triplet(stats: AggregateStats) -> str:
    return (
        f"{stats.latency_min_ms:.1f} / {stats.latency_mean_ms:.1f} / "
        f"{stats.latency_max_ms:.1f}ms"
    )


def _print_report(report: DriverReport, config: TestConfig) -> None:
    console.print()
    for phase in report.phases:
        console.print(_phase_table(phase))

    if report.cancelled:
        console.print("[yellow][WARNING][/yellow] Load test stopped early")
    else:
        console.print("[green][SUCCESS][/green] Load testing completed!")

    console.print(f"[blue][INFO][/blue] Initial fleet state: {report.initial_scaling.describe()}")
    console.print(f"[blue][INFO][/blue] Final fleet state: {report.final_scaling.describe()}")
    console.print(
        "[blue][INFO][/blue] Monitor your Auto Scaling Group in the AWS Console:\n"
        f"  https://console.aws.amazon.com/ec2autoscaling/home?region={config.region}#/details\n"
        "[blue][INFO][/blue] Monitor CloudWatch metrics:\n"
        f"  https://console.aws.amazon.com/cloudwatch/home?region={config.region}#metricsV2:"
    )


# ---------------------------------------------------------------------------
# Event loop
# ---------------------------------------------------------------------------


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* on uvloop when available, else on the default loop."""
    if sys.platform != "win32":
        try:
            import uvloop
        except ImportError:
            logger.debug("uvloop not available, using default asyncio event loop")
        else:
            return uvloop.run(coro)
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    dns: str = typer.Option(
        ...,
        "--dns",
        "-d",
        help="Load balancer DNS name or URL of the target.",
    ),
    region: str = typer.Option(
        DEFAULT_REGION,
        "--region",
        "-r",
        help="AWS region of the fleet.",
    ),
    concurrent: int = typer.Option(
        10,
        "--concurrent",
        "-c",
        help="Number of concurrent users.",
    ),
    duration: int = typer.Option(
        300,
        "--duration",
        "-t",
        help="Test duration in seconds.",
    ),
    ramp_up: int = typer.Option(
        60,
        "--ramp-up",
        "-u",
        help="Ramp-up time in seconds.",
    ),
    asg_name: str | None = typer.Option(
        None,
        "--asg-name",
        "-a",
        help="Auto Scaling Group name (auto-detected if not provided).",
    ),
    mode: str | None = typer.Option(
        None,
        "--mode",
        "-m",
        help="Skip the menu: basic, benchmark, ramp or all.",
    ),
    hold: bool = typer.Option(
        False,
        "--hold",
        help="After the ramp, keep full concurrency until the duration ends.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit diagnostics as JSON lines.",
    ),
) -> None:
    """Generate HTTP load against a target to exercise fleet auto scaling."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=log_json)

    try:
        settings = load_settings()
        config = TestConfig(
            target=dns,
            region=region,
            concurrency=concurrent,
            duration=duration,
            ramp_up=ramp_up,
            fleet_name=asg_name,
            request_timeout=settings.request_timeout,
            request_delay=settings.request_delay,
            report_interval=settings.report_interval,
            probe_timeout=settings.probe_timeout,
            hold=hold,
        )
    except ConfigError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        raise typer.Exit(code=1) from exc

    capabilities = detect_capabilities(region)
    modes = _parse_mode(mode, capabilities) if mode is not None else None
    if modes is not None and TestMode.RAMP in modes:
        try:
            config.validate_for_ramp()
        except ConfigError as exc:
            console.print(f"[red][ERROR][/red] {exc}")
            raise typer.Exit(code=1) from exc

    console.print(
        Panel(
            f"[bold]Target:[/bold]     {config.target_url}\n"
            f"[bold]Region:[/bold]     {config.region}\n"
            f"[bold]Users:[/bold]      {config.concurrency}\n"
            f"[bold]Duration:[/bold]   {config.duration:.0f}s\n"
            f"[bold]Ramp-up:[/bold]    {config.ramp_up:.0f}s\n"
            f"[bold]Benchmark:[/bold]  {'ab' if capabilities.has_benchmark_tool else 'unavailable'}\n"
            f"[bold]Monitoring:[/bold] {'AWS' if capabilities.cloud_monitoring else 'unavailable'}",
            title="Auto Scaling Load Test",
            border_style="cyan",
        )
    )

    driver = TestDriver(
        config,
        capabilities.build_probe(region, timeout=config.probe_timeout),
        capabilities=capabilities,
        on_progress=lambda update: _print_progress(update, config.ramp_steps),
    )

    console.print("[blue][INFO][/blue] Testing target connectivity...")
    try:
        run_async(driver.check_reachability())
    except ReachabilityError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print("[green][SUCCESS][/green] Target is responding (HTTP 200)")

    if modes is None:
        modes = _prompt_modes(capabilities)

    try:
        report = run_async(driver.run(modes))
    except ConfigError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        raise typer.Exit(code=1) from exc

    _print_report(report, config)
