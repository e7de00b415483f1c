"""fleetload — concurrent HTTP load generation correlated with fleet scaling."""

from __future__ import annotations

from fleetload._internal.config import TestConfig
from fleetload.engine.driver import DriverReport, TestDriver, TestMode
from fleetload.engine.executor import OutcomeStatus, RequestExecutor, RequestOutcome
from fleetload.engine.pool import WorkerPool
from fleetload.engine.ramp import RampController, RampStep, build_schedule
from fleetload.metrics.aggregator import MetricsAggregator
from fleetload.metrics.models import AggregateStats
from fleetload.monitoring.probe import (
    AutoScalingProbe,
    NullProbe,
    ScalingSnapshot,
    ScalingStateProbe,
    Unavailable,
)

__version__ = "0.1.0"

__all__ = [
    "AggregateStats",
    "AutoScalingProbe",
    "DriverReport",
    "MetricsAggregator",
    "NullProbe",
    "OutcomeStatus",
    "RampController",
    "RampStep",
    "RequestExecutor",
    "RequestOutcome",
    "ScalingSnapshot",
    "ScalingStateProbe",
    "TestConfig",
    "TestDriver",
    "TestMode",
    "Unavailable",
    "WorkerPool",
    "build_schedule",
]
