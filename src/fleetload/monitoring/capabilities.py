"""One-time detection of optional external tooling."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING

import boto3
from botocore.exceptions import BotoCoreError

from fleetload._internal.logging import get_logger
from fleetload.monitoring.probe import AutoScalingProbe, NullProbe

if TYPE_CHECKING:
    from fleetload.monitoring.probe import ScalingStateProbe

logger = get_logger("monitoring.capabilities")

BENCHMARK_TOOL = "ab"


@dataclass(frozen=True)
class Capabilities:
    """Optional features available on this machine.

    Attributes:
        benchmark_tool: Path to Apache Bench, or None when not installed.
        cloud_monitoring: True when AWS credentials can be resolved.
    """

    benchmark_tool: str | None = None
    cloud_monitoring: bool = False

    @property
    def has_benchmark_tool(self) -> bool:
        return self.benchmark_tool is not None

    def build_probe(self, region: str, *, timeout: float) -> ScalingStateProbe:
        """Return a live probe when monitoring is possible, else a NullProbe."""
        if not self.cloud_monitoring:
            return NullProbe()
        return AutoScalingProbe(region, timeout=timeout)


def _has_aws_credentials(region: str) -> bool:
    try:
        session = boto3.Session(region_name=region)
        return session.get_credentials() is not None
    except BotoCoreError as exc:
        logger.debug("AWS credential lookup failed: %s", exc)
        return False


def detect_capabilities(region: str) -> Capabilities:
    """Resolve which optional tools are available.

    Called once at startup; the result is threaded through the run instead of
    re-checking. Missing tools only narrow the offered modes.

    Args:
        region: Region used for the credential lookup.

    Returns:
        Detected capabilities.
    """
    benchmark_tool = shutil.which(BENCHMARK_TOOL)
    cloud_monitoring = _has_aws_credentials(region)

    if benchmark_tool:
        logger.info("Apache Bench found at %s; advanced benchmark mode enabled", benchmark_tool)
    else:
        logger.warning("Apache Bench (ab) not found; advanced benchmark mode disabled")
    if cloud_monitoring:
        logger.info("AWS credentials found; fleet monitoring enabled")
    else:
        logger.warning("AWS credentials not found; fleet monitoring disabled")

    return Capabilities(benchmark_tool=benchmark_tool, cloud_monitoring=cloud_monitoring)
