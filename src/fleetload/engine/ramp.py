"""Staged ramp-up: step schedule and the controller that drives a pool."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fleetload._internal.errors import ConfigError
from fleetload._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from fleetload.engine.pool import WorkerPool

logger = get_logger("engine.ramp")

DEFAULT_STEP_COUNT = 5


@dataclass(frozen=True)
class RampStep:
    """One stage of a ramp.

    Attributes:
        index: 1-based position in the schedule.
        target_concurrency: Workers that should be running during the step.
        duration: Seconds the step lasts.
    """

    index: int
    target_concurrency: int
    duration: float


def build_schedule(
    total_concurrency: int,
    ramp_duration: float,
    step_count: int = DEFAULT_STEP_COUNT,
) -> list[RampStep]:
    """Divide a ramp window into equal steps of rising concurrency.

    Step *i* targets ``floor(i * total_concurrency / step_count)`` workers,
    so the last step always reaches *total_concurrency*. When
    *total_concurrency* is smaller than *step_count* some early steps target
    zero workers.

    Args:
        total_concurrency: Concurrency reached by the final step.
        ramp_duration: Length of the ramp window in seconds.
        step_count: Number of steps.

    Returns:
        Steps in execution order, non-decreasing in concurrency.

    Raises:
        ConfigError: If any argument is out of range.

    Example::

        >>> [s.target_concurrency for s in build_schedule(10, 60.0)]
        [2, 4, 6, 8, 10]
    """
    if total_concurrency < 1:
        msg = f"total_concurrency must be >= 1, got {total_concurrency}"
        raise ConfigError(msg)
    if ramp_duration <= 0:
        msg = f"ramp_duration must be positive, got {ramp_duration}"
        raise ConfigError(msg)
    if step_count < 1:
        msg = f"step_count must be >= 1, got {step_count}"
        raise ConfigError(msg)

    step_duration = ramp_duration / step_count
    return [
        RampStep(
            index=i,
            target_concurrency=i * total_concurrency // step_count,
            duration=step_duration,
        )
        for i in range(1, step_count + 1)
    ]


class RampController:
    """Drives a :class:`WorkerPool` through a ramp schedule.

    Steps run strictly in order. At the start of each step the pool grows to
    the step's target (it never shrinks), then the controller sleeps until
    the step's scheduled end while workers run underneath. The per-step
    callback runs as a separate task so a slow callback never delays the
    next step. Workers are
    started with the run deadline and stop by themselves; nothing is killed
    at step boundaries.

    After the final step a pure ramp ends at the ramp deadline; with
    *hold_until* the pool keeps running at full concurrency until then.
    """

    def __init__(
        self,
        pool: WorkerPool,
        steps: list[RampStep],
        *,
        on_step: Callable[[RampStep], Coroutine[Any, Any, None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the controller.

        Args:
            pool: Pool whose worker count is adjusted.
            steps: Schedule produced by :func:`build_schedule`.
            on_step: Coroutine callback started after each step completes;
                pending callbacks are awaited before :meth:`run` returns.
            clock: Monotonic clock shared with the pool.
        """
        self._pool = pool
        self._steps = steps
        self._on_step = on_step
        self._clock = clock
        self._completed: list[RampStep] = []
        self._step_tasks: set[asyncio.Task[None]] = set()

    @property
    def completed_steps(self) -> list[RampStep]:
        """Steps that ran to their scheduled end."""
        return list(self._completed)

    async def run(self, hold_until: float | None = None) -> None:
        """Execute every step, optionally hold, then join the pool.

        Args:
            hold_until: Monotonic deadline of a ramp-then-hold test. None for
                a pure ramp, which ends with the last step.
        """
        start = self._clock()
        ramp_end = start + sum(step.duration for step in self._steps)
        deadline = ramp_end if hold_until is None else max(hold_until, ramp_end)

        step_end = start
        for step in self._steps:
            if self._pool.cancelled:
                break

            added = self._pool.scale_to(step.target_concurrency, deadline)
            logger.info(
                "Step %d/%d: %d concurrent workers (+%d) for %.1fs",
                step.index,
                len(self._steps),
                step.target_concurrency,
                added,
                step.duration,
            )

            step_end += step.duration
            await self._sleep_until(step_end)
            if self._pool.cancelled:
                break

            self._completed.append(step)
            if self._on_step is not None:
                task = asyncio.create_task(
                    self._on_step(step),
                    name=f"fleetload-ramp-step-{step.index}",
                )
                self._step_tasks.add(task)
                task.add_done_callback(self._step_tasks.discard)

        if hold_until is not None and not self._pool.cancelled:
            logger.info("Ramp complete, holding until the run deadline")

        try:
            await self._pool.join()
        except asyncio.CancelledError:
            for task in self._step_tasks:
                task.cancel()
            raise
        if self._step_tasks:
            await asyncio.gather(*self._step_tasks)

    async def _sleep_until(self, when: float) -> None:
        remaining = when - self._clock()
        if remaining > 0:
            await self._pool.wait_cancelled(remaining)
