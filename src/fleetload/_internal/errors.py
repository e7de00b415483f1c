"""Custom exception hierarchy for fleetload."""

from __future__ import annotations


class FleetLoadError(Exception):
    """Base exception for all fleetload errors.

    Only ``ConfigError`` and ``ReachabilityError`` ever stop a run. Every
    other failure is captured as data (a classified request outcome or an
    unavailable scaling sample) and surfaces in the final report.
    """


class ConfigError(FleetLoadError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Concurrency or duration below 1.
        - Ramp-up window longer than the total test duration.
        - An environment variable with an unparsable value.
    """


class ReachabilityError(FleetLoadError):
    """Raised when the pre-flight request does not return HTTP 200.

    Carries the outcome that failed the check so callers can report it.
    """

    def __init__(self, message: str, outcome: object | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class EngineError(FleetLoadError):
    """Raised when the driver is used out of order or a run cannot start."""


class ProbeUnavailableError(FleetLoadError):
    """Raised inside a scaling probe when the fleet state cannot be read.

    Never escapes :func:`fleetload.monitoring.probe.sample_with_timeout`;
    it is converted into an ``Unavailable`` sample there.
    """


class BenchmarkError(FleetLoadError):
    """Raised when the external benchmarking tool exits with an error.

    Attributes:
        output: Captured tool output, for diagnostics.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output
