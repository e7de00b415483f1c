"""Fleet scaling-state probes.

A probe reports the desired capacity and live instance count of the fleet
behind the target. Probes are best-effort: every failure (missing
credentials, API errors, a slow control plane, an unknown fleet) becomes an
:class:`Unavailable` sample and never aborts a load test.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from fleetload._internal.errors import ProbeUnavailableError
from fleetload._internal.logging import get_logger

logger = get_logger("monitoring.probe")

DEFAULT_PROJECT_TAG = "Project"


@dataclass(frozen=True)
class ScalingSnapshot:
    """Point-in-time capacity of a fleet.

    Attributes:
        fleet_name: Auto Scaling Group name.
        desired_capacity: Capacity the group is scaling towards.
        instance_count: Instances currently attached to the group.
    """

    fleet_name: str
    desired_capacity: int
    instance_count: int

    @property
    def available(self) -> bool:
        return True

    def describe(self) -> str:
        return (
            f"ASG: {self.fleet_name} | Desired: {self.desired_capacity} "
            f"| Instances: {self.instance_count}"
        )


@dataclass(frozen=True)
class Unavailable:
    """Marker returned when the fleet state could not be read.

    Attributes:
        reason: Short human-readable cause.
    """

    reason: str = "unknown"

    @property
    def available(self) -> bool:
        return False

    def describe(self) -> str:
        return f"ASG: Unavailable ({self.reason})"


ProbeResult = ScalingSnapshot | Unavailable


class ScalingStateProbe(Protocol):
    """Interface of a fleet scaling-state source.

    Implementations must be safe to call concurrently and must return
    :class:`Unavailable` instead of raising.
    """

    async def sample(self, fleet_name: str | None) -> ProbeResult: ...


class NullProbe:
    """Probe used when cloud monitoring is not available."""

    def __init__(self, reason: str = "cloud monitoring not available") -> None:
        self._reason = reason

    async def sample(self, fleet_name: str | None) -> ProbeResult:
        return Unavailable(self._reason)


class AutoScalingProbe:
    """Reads AWS Auto Scaling Group state through boto3.

    The synchronous boto3 call runs in a worker thread and is bounded by
    both botocore socket timeouts and an ``asyncio`` timeout. Retries are
    disabled so a struggling control plane cannot stretch a sample.

    When no fleet name is given, the first group tagged with
    *project_tag* is used and the discovered name is remembered for later
    samples. Snapshots themselves are never cached.
    """

    def __init__(
        self,
        region: str,
        *,
        timeout: float = 5.0,
        project_tag: str = DEFAULT_PROJECT_TAG,
        client: Any = None,
    ) -> None:
        """Initialize the probe.

        Args:
            region: AWS region of the fleet.
            timeout: Upper bound for one sample in seconds.
            project_tag: Tag key used for fleet discovery.
            client: Pre-built ``autoscaling`` client, mainly for tests.
        """
        self.region = region
        self.timeout = timeout
        self.project_tag = project_tag
        self._client = client
        self._discovered: str | None = None

    async def sample(self, fleet_name: str | None) -> ProbeResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._describe, fleet_name),
                timeout=self.timeout,
            )
        except TimeoutError:
            logger.warning("Scaling probe timed out after %.1fs", self.timeout)
            return Unavailable("timeout")
        except ProbeUnavailableError as exc:
            logger.debug("Scaling probe unavailable: %s", exc)
            return Unavailable(str(exc))
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Scaling probe failed: %s", exc)
            return Unavailable(type(exc).__name__)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "autoscaling",
                region_name=self.region,
                config=Config(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"max_attempts": 1, "mode": "standard"},
                ),
            )
        return self._client

    def _describe(self, fleet_name: str | None) -> ScalingSnapshot:
        client = self._get_client()
        name = fleet_name or self._discovered or self._discover(client)

        response = client.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        groups = response.get("AutoScalingGroups", [])
        if not groups:
            msg = f"fleet {name!r} not found"
            raise ProbeUnavailableError(msg)

        group = groups[0]
        return ScalingSnapshot(
            fleet_name=group["AutoScalingGroupName"],
            desired_capacity=int(group["DesiredCapacity"]),
            instance_count=len(group.get("Instances", [])),
        )

    def _discover(self, client: Any) -> str:
        paginator = client.get_paginator("describe_auto_scaling_groups")
        for page in paginator.paginate():
            for group in page.get("AutoScalingGroups", []):
                if any(tag.get("Key") == self.project_tag for tag in group.get("Tags", [])):
                    self._discovered = group["AutoScalingGroupName"]
                    logger.info("Discovered fleet %s", self._discovered)
                    return self._discovered

        msg = f"no fleet tagged {self.project_tag!r}"
        raise ProbeUnavailableError(msg)


async def sample_with_timeout(
    probe: ScalingStateProbe,
    fleet_name: str | None,
    timeout: float,
) -> ProbeResult:
    """Sample *probe*, converting any failure or overrun into Unavailable.

    Args:
        probe: Probe to query.
        fleet_name: Explicit fleet name, or None for discovery.
        timeout: Seconds the caller is willing to wait.

    Returns:
        The probe's sample, or :class:`Unavailable`.
    """
    try:
        return await asyncio.wait_for(probe.sample(fleet_name), timeout=timeout)
    except TimeoutError:
        return Unavailable("timeout")
    except Exception as exc:
        logger.warning("Scaling probe raised %s", type(exc).__name__, exc_info=True)
        return Unavailable(type(exc).__name__)
