"""Fixed-memory latency histogram.

Wraps ``hdrh.histogram.HdrHistogram`` so percentiles can be reported for
arbitrarily long runs without retaining individual samples. Values are
accepted in milliseconds and stored as integer microseconds.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# 1 microsecond to 5 minutes, comfortably above any request timeout.
_LOWEST_US = 1
_HIGHEST_US = 300_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """HDR histogram working in milliseconds.

    Samples outside the trackable range are clamped rather than dropped so
    the histogram count always matches the number of recorded outcomes.
    """

    def __init__(self, significant_digits: int = _SIGNIFICANT_DIGITS) -> None:
        self._significant_digits = significant_digits
        self._histogram = HdrHistogram(_LOWEST_US, _HIGHEST_US, significant_digits)

    @property
    def count(self) -> int:
        """Number of recorded samples."""
        return int(self._histogram.total_count)

    def record(self, latency_ms: float) -> None:
        """Record one latency sample."""
        value_us = max(_LOWEST_US, min(int(latency_ms * 1000), _HIGHEST_US))
        self._histogram.record_value(value_us)

    def percentile(self, percentile: float) -> float:
        """Return the latency at *percentile* (0-100) in ms, 0.0 when empty."""
        if self.count == 0:
            return 0.0
        return self._histogram.get_value_at_percentile(percentile) / 1000.0

    def add(self, other: LatencyHistogram) -> None:
        """Merge *other* into this histogram."""
        self._histogram.add(other._histogram)

    def copy(self) -> LatencyHistogram:
        """Return an independent copy."""
        clone = LatencyHistogram(self._significant_digits)
        clone.add(self)
        return clone
