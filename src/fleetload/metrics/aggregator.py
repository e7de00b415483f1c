"""Thread-safe accumulation of request outcomes.

A single ``MetricsAggregator`` is shared by every worker of a run. Workers
call :meth:`MetricsAggregator.record` directly; all mutation happens under
one internal lock, so callers never synchronize themselves. Latency is kept
as running min/max/sum plus a fixed-size HDR histogram, which bounds memory
regardless of run length.
"""

from __future__ import annotations

import math
import threading
from collections import defaultdict
from typing import TYPE_CHECKING

from fleetload._internal.logging import get_logger
from fleetload.engine.executor import OutcomeStatus
from fleetload.metrics.histogram import LatencyHistogram
from fleetload.metrics.models import AggregateStats

if TYPE_CHECKING:
    from fleetload.engine.executor import RequestOutcome

logger = get_logger("metrics.aggregator")


class MetricsAggregator:
    """Accumulates outcomes from concurrent workers.

    ``record`` and ``merge`` are commutative and associative: the final
    totals do not depend on the order outcomes arrive in. ``snapshot``
    returns an immutable copy taken under the lock, so a single outcome is
    either fully reflected or not at all.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[OutcomeStatus, int] = defaultdict(int)
        self._errors_by_status: dict[int, int] = defaultdict(int)
        self._latency_min = math.inf
        self._latency_max = 0.0
        self._latency_sum = 0.0
        self._histogram = LatencyHistogram()

    def record(self, outcome: RequestOutcome) -> None:
        """Add one outcome to the running totals.

        Args:
            outcome: Classified result of a single request.
        """
        with self._lock:
            self._counts[outcome.status] += 1
            if outcome.status is OutcomeStatus.HTTP_ERROR:
                self._errors_by_status[outcome.status_code] += 1
            self._latency_min = min(self._latency_min, outcome.latency_ms)
            self._latency_max = max(self._latency_max, outcome.latency_ms)
            self._latency_sum += outcome.latency_ms
            self._histogram.record(outcome.latency_ms)

    def merge(self, other: MetricsAggregator) -> None:
        """Fold every outcome recorded by *other* into this aggregator.

        Args:
            other: Another aggregator, e.g. one per worker or per phase.

        Raises:
            ValueError: If *other* is this aggregator.
        """
        if other is self:
            msg = "cannot merge an aggregator into itself"
            raise ValueError(msg)

        with other._lock:
            counts = dict(other._counts)
            errors_by_status = dict(other._errors_by_status)
            latency_min = other._latency_min
            latency_max = other._latency_max
            latency_sum = other._latency_sum
            histogram = other._histogram.copy()

        with self._lock:
            for status, count in counts.items():
                self._counts[status] += count
            for code, count in errors_by_status.items():
                self._errors_by_status[code] += count
            self._latency_min = min(self._latency_min, latency_min)
            self._latency_max = max(self._latency_max, latency_max)
            self._latency_sum += latency_sum
            self._histogram.add(histogram)

        logger.debug("Merged %d outcomes", sum(counts.values()))

    def snapshot(self) -> AggregateStats:
        """Return a consistent copy of the current totals."""
        with self._lock:
            requests = sum(self._counts.values())
            return AggregateStats(
                requests=requests,
                successes=self._counts[OutcomeStatus.SUCCESS],
                http_errors=self._counts[OutcomeStatus.HTTP_ERROR],
                timeouts=self._counts[OutcomeStatus.TIMEOUT],
                transport_errors=self._counts[OutcomeStatus.TRANSPORT_ERROR],
                latency_min_ms=self._latency_min if requests else 0.0,
                latency_max_ms=self._latency_max,
                latency_sum_ms=self._latency_sum,
                latency_p50_ms=self._histogram.percentile(50.0),
                latency_p95_ms=self._histogram.percentile(95.0),
                latency_p99_ms=self._histogram.percentile(99.0),
                errors_by_status=dict(self._errors_by_status),
            )
