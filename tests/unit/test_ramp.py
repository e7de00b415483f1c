"""Tests for the ramp schedule and RampController step sequencing."""

from __future__ import annotations

import asyncio
import contextlib

import pytest

from fleetload._internal.errors import ConfigError
from fleetload.engine.ramp import RampController, RampStep, build_schedule


class TestBuildSchedule:
    def test_even_steps(self):
        steps = build_schedule(10, 60.0)
        assert [s.target_concurrency for s in steps] == [2, 4, 6, 8, 10]
        assert [s.index for s in steps] == [1, 2, 3, 4, 5]
        assert all(s.duration == 12.0 for s in steps)

    def test_last_step_reaches_total(self):
        for total in (1, 3, 7, 11, 100):
            assert build_schedule(total, 10.0)[-1].target_concurrency == total

    def test_concurrency_below_step_count_has_zero_steps(self):
        steps = build_schedule(3, 10.0)
        assert [s.target_concurrency for s in steps] == [0, 1, 1, 2, 3]

    @pytest.mark.parametrize(("total", "count"), [(1, 5), (7, 3), (13, 5), (50, 4)])
    def test_monotonic_non_decreasing(self, total, count):
        targets = [s.target_concurrency for s in build_schedule(total, 30.0, count)]
        assert targets == sorted(targets)
        assert len(targets) == count

    def test_step_durations_sum_to_window(self):
        steps = build_schedule(10, 7.0, step_count=3)
        assert sum(s.duration for s in steps) == pytest.approx(7.0)

    @pytest.mark.parametrize(
        ("total", "ramp", "count", "match"),
        [
            (0, 10.0, 5, "total_concurrency"),
            (10, 0.0, 5, "ramp_duration"),
            (10, -1.0, 5, "ramp_duration"),
            (10, 10.0, 0, "step_count"),
        ],
    )
    def test_invalid_arguments(self, total, ramp, count, match):
        with pytest.raises(ConfigError, match=match):
            build_schedule(total, ramp, count)


class _RecordingPool:
    """Stand-in pool that records scale_to calls."""

    def __init__(self) -> None:
        self.scale_calls: list[tuple[int, float]] = []
        self.scale_times: list[float] = []
        self.joined = False
        self._stop = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        self._stop.set()

    def scale_to(self, target: int, deadline: float) -> int:
        previous = self.scale_calls[-1][0] if self.scale_calls else 0
        self.scale_calls.append((target, deadline))
        self.scale_times.append(asyncio.get_running_loop().time())
        return max(0, target - previous)

    async def wait_cancelled(self, timeout: float) -> bool:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=timeout)
        return self._stop.is_set()

    async def join(self) -> None:
        self.joined = True


class TestRampController:
    async def test_steps_run_in_order(self):
        pool = _RecordingPool()
        seen: list[RampStep] = []

        async def _on_step(step: RampStep) -> None:
            seen.append(step)

        steps = build_schedule(4, 0.2, step_count=4)
        controller = RampController(pool, steps, on_step=_on_step)
        await controller.run()

        assert [target for target, _ in pool.scale_calls] == [1, 2, 3, 4]
        assert seen == steps
        assert controller.completed_steps == steps
        assert pool.joined

    async def test_every_step_shares_the_ramp_deadline(self):
        pool = _RecordingPool()
        await RampController(pool, build_schedule(2, 0.1, step_count=2)).run()

        deadlines = {deadline for _, deadline in pool.scale_calls}
        assert len(deadlines) == 1

    async def test_hold_extends_the_deadline(self):
        loop = asyncio.get_running_loop()
        pool = _RecordingPool()
        hold_until = loop.time() + 60.0
        controller = RampController(
            pool, build_schedule(2, 0.1, step_count=2), clock=loop.time
        )
        await controller.run(hold_until=hold_until)

        assert all(deadline == hold_until for _, deadline in pool.scale_calls)

    async def test_cancel_stops_remaining_steps(self):
        pool = _RecordingPool()
        steps = build_schedule(5, 50.0, step_count=5)

        async def _cancel_soon() -> None:
            await asyncio.sleep(0.05)
            pool.cancel()

        canceller = asyncio.create_task(_cancel_soon())
        controller = RampController(pool, steps)
        await asyncio.wait_for(controller.run(), timeout=5.0)
        await canceller

        assert len(pool.scale_calls) == 1
        assert controller.completed_steps == []
        assert pool.joined

    async def test_slow_step_callback_does_not_shift_steps(self):
        pool = _RecordingPool()
        finished: list[int] = []

        async def _slow_on_step(step: RampStep) -> None:
            await asyncio.sleep(0.25)
            finished.append(step.index)

        steps = build_schedule(4, 0.4, step_count=4)
        controller = RampController(pool, steps, on_step=_slow_on_step)
        await controller.run()

        first = pool.scale_times[0]
        offsets = [t - first for t in pool.scale_times]
        for offset, expected in zip(offsets, [0.0, 0.1, 0.2, 0.3], strict=True):
            assert abs(offset - expected) < 0.06
        assert sorted(finished) == [1, 2, 3, 4]
