"""Configuration loading for fleetload."""

from __future__ import annotations

import os
from dataclasses import dataclass

from fleetload._internal.errors import ConfigError

DEFAULT_REGION = "ap-southeast-2"


@dataclass(frozen=True)
class Settings:
    """Environment-level tunables shared by every run.

    Attributes:
        request_timeout: Per-request timeout in seconds.
        request_delay: Pacing interval between requests of one worker.
        report_interval: Seconds between progress reports during a basic run.
        probe_timeout: Upper bound for a single scaling-state sample.
    """

    request_timeout: float = 10.0
    request_delay: float = 0.1
    report_interval: float = 10.0
    probe_timeout: float = 5.0


@dataclass(frozen=True)
class TestConfig:
    """Parameters of a single load-test invocation.

    Attributes:
        target: Target host name or full URL.
        region: Region label passed through to the scaling probe.
        concurrency: Number of concurrent workers at full load.
        duration: Total test duration in seconds.
        ramp_up: Ramp-up window in seconds.
        fleet_name: Explicit fleet identifier; discovered when None.
        request_timeout: Per-request timeout in seconds.
        request_delay: Pacing interval between requests of one worker.
        report_interval: Seconds between progress reports.
        reachability_timeout: Timeout of the pre-flight request.
        probe_timeout: Upper bound for a single scaling-state sample.
        ramp_steps: Number of discrete ramp steps.
        hold: Keep full concurrency after the ramp until ``duration`` ends.

    Raises:
        ConfigError: If any value is out of range.
    """

    __test__ = False

    target: str
    region: str = DEFAULT_REGION
    concurrency: int = 10
    duration: float = 300.0
    ramp_up: float = 60.0
    fleet_name: str | None = None
    request_timeout: float = 10.0
    request_delay: float = 0.1
    report_interval: float = 10.0
    reachability_timeout: float = 10.0
    probe_timeout: float = 5.0
    ramp_steps: int = 5
    hold: bool = False

    def __post_init__(self) -> None:
        if not self.target.strip():
            msg = "target must not be empty"
            raise ConfigError(msg)
        if self.concurrency < 1:
            msg = f"concurrency must be >= 1, got: {self.concurrency}"
            raise ConfigError(msg)
        if self.duration < 1:
            msg = f"duration must be >= 1, got: {self.duration}"
            raise ConfigError(msg)
        if self.ramp_steps < 1:
            msg = f"ramp_steps must be >= 1, got: {self.ramp_steps}"
            raise ConfigError(msg)
        if self.request_delay < 0:
            msg = f"request_delay must be non-negative, got: {self.request_delay}"
            raise ConfigError(msg)
        for name in (
            "ramp_up",
            "request_timeout",
            "report_interval",
            "reachability_timeout",
            "probe_timeout",
        ):
            value = getattr(self, name)
            if value <= 0:
                msg = f"{name} must be positive, got: {value}"
                raise ConfigError(msg)

    @property
    def target_url(self) -> str:
        """Return the target as a URL, assuming plain HTTP for bare hosts."""
        if "://" in self.target:
            return self.target
        return f"http://{self.target}"

    def validate_for_ramp(self) -> None:
        """Check the constraints that only apply to ramp modes.

        Raises:
            ConfigError: If the ramp-up window exceeds the total duration.
        """
        if self.ramp_up > self.duration:
            msg = f"ramp_up ({self.ramp_up}s) must not exceed duration ({self.duration}s)"
            raise ConfigError(msg)


def _read_positive_float(name: str, default: str, *, allow_zero: bool = False) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None

    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        msg = f"{name} must be {qualifier}, got: {value}"
        raise ConfigError(msg)
    return value


def load_settings() -> Settings:
    """Load tunables from environment variables with defaults.

    Environment variables:
        FLEETLOAD_REQUEST_TIMEOUT: Per-request timeout (default: 10.0).
        FLEETLOAD_REQUEST_DELAY: Per-worker pacing interval (default: 0.1).
        FLEETLOAD_REPORT_INTERVAL: Progress report interval (default: 10.0).
        FLEETLOAD_PROBE_TIMEOUT: Scaling probe timeout (default: 5.0).

    Returns:
        Populated Settings instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    return Settings(
        request_timeout=_read_positive_float("FLEETLOAD_REQUEST_TIMEOUT", "10.0"),
        request_delay=_read_positive_float("FLEETLOAD_REQUEST_DELAY", "0.1", allow_zero=True),
        report_interval=_read_positive_float("FLEETLOAD_REPORT_INTERVAL", "10.0"),
        probe_timeout=_read_positive_float("FLEETLOAD_PROBE_TIMEOUT", "5.0"),
    )
