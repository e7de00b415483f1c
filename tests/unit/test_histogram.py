"""Tests for LatencyHistogram."""

from __future__ import annotations

from fleetload.metrics.histogram import LatencyHistogram


class TestLatencyHistogram:
    def test_percentiles_of_uniform_samples(self):
        h = LatencyHistogram()
        for i in range(1, 101):
            h.record(float(i))

        assert 49.0 <= h.percentile(50.0) <= 51.0
        assert 98.0 <= h.percentile(99.0) <= 101.0
        assert h.count == 100

    def test_empty_histogram_returns_zero(self):
        h = LatencyHistogram()
        assert h.percentile(50.0) == 0.0
        assert h.count == 0

    def test_sub_microsecond_values_are_clamped_not_dropped(self):
        h = LatencyHistogram()
        h.record(0.0)
        h.record(0.0001)
        assert h.count == 2

    def test_huge_values_are_clamped(self):
        h = LatencyHistogram()
        h.record(10_000_000.0)
        assert h.count == 1
        assert h.percentile(100.0) <= 300_000 * 1.01

    def test_add_merges_counts(self):
        a = LatencyHistogram()
        b = LatencyHistogram()
        a.record(10.0)
        b.record(20.0)
        b.record(30.0)

        a.add(b)

        assert a.count == 3
        assert b.count == 2

    def test_copy_is_independent(self):
        h = LatencyHistogram()
        h.record(5.0)
        clone = h.copy()
        clone.record(6.0)

        assert h.count == 1
        assert clone.count == 2
