"""Aggregate statistics produced by a load-test run."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AggregateStats:
    """Point-in-time totals of every outcome recorded so far.

    Instances are immutable copies handed out by
    :meth:`fleetload.metrics.aggregator.MetricsAggregator.snapshot`.

    Attributes:
        requests: Total requests issued.
        successes: Requests answered with a 2xx or 3xx status.
        http_errors: Requests answered with a 4xx or 5xx status.
        timeouts: Requests with no response within the timeout.
        transport_errors: Connection failures (DNS, refused, reset).
        latency_min_ms: Minimum observed latency.
        latency_max_ms: Maximum observed latency.
        latency_sum_ms: Sum of all latencies, for the running mean.
        latency_p50_ms: Median latency.
        latency_p95_ms: 95th percentile latency.
        latency_p99_ms: 99th percentile latency.
        errors_by_status: HTTP error count keyed by status code.
    """

    requests: int = 0
    successes: int = 0
    http_errors: int = 0
    timeouts: int = 0
    transport_errors: int = 0
    latency_min_ms: float = 0.0
    latency_max_ms: float = 0.0
    latency_sum_ms: float = 0.0
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    latency_p99_ms: float = 0.0
    errors_by_status: dict[int, int] = field(default_factory=dict)

    @property
    def failures(self) -> int:
        """Requests that were not successful, across all failure classes."""
        return self.http_errors + self.timeouts + self.transport_errors

    @property
    def latency_mean_ms(self) -> float:
        """Mean latency, 0.0 when nothing was recorded."""
        if self.requests == 0:
            return 0.0
        return self.latency_sum_ms / self.requests

    @property
    def error_rate(self) -> float:
        """Fraction of requests that failed (0.0 to 1.0)."""
        if self.requests == 0:
            return 0.0
        return self.failures / self.requests

    def rate(self, elapsed_seconds: float) -> float | None:
        """Requests per second over *elapsed_seconds*, None if not computable."""
        if elapsed_seconds <= 0:
            return None
        return self.requests / elapsed_seconds
