"""Deadline-aware pool of concurrent request workers."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

from fleetload._internal.logging import get_logger
from fleetload.engine.executor import RequestExecutor

if TYPE_CHECKING:
    from collections.abc import Callable

    from fleetload.metrics.aggregator import MetricsAggregator

logger = get_logger("engine.pool")


class WorkerPool:
    """Owns a set of asyncio worker tasks hitting one target.

    Each worker loops: check the deadline and the stop signal, execute one
    request, record the outcome, then wait out the rest of its pacing
    interval, so request *k* of a worker starts no earlier than
    ``first_start + k * request_delay``. Workers exit on their own once the
    next request could not start before the deadline, so joining never
    loses an outcome. :meth:`cancel` stops new iterations; an in-flight
    request is allowed to finish and is still recorded.

    Attributes:
        target: URL every worker requests.
        request_timeout: Per-request timeout in seconds.
        request_delay: Per-worker pacing interval in seconds.
    """

    def __init__(
        self,
        target: str,
        aggregator: MetricsAggregator,
        *,
        request_timeout: float = 10.0,
        request_delay: float = 0.1,
        executor_factory: Callable[[], RequestExecutor] = RequestExecutor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the pool.

        Args:
            target: URL every worker requests.
            aggregator: Shared sink for request outcomes.
            request_timeout: Per-request timeout in seconds.
            request_delay: Per-worker pacing interval in seconds.
            executor_factory: Builds one executor per worker.
            clock: Monotonic clock used for deadlines.
        """
        self.target = target
        self.request_timeout = request_timeout
        self.request_delay = request_delay
        self._aggregator = aggregator
        self._executor_factory = executor_factory
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[int]] = []
        self._issued: dict[int, int] = {}

    @property
    def active_workers(self) -> int:
        """Number of workers still running."""
        return sum(1 for task in self._tasks if not task.done())

    @property
    def started_workers(self) -> int:
        """Number of workers started over the pool's lifetime."""
        return len(self._tasks)

    @property
    def cancelled(self) -> bool:
        """True once :meth:`cancel` has been called."""
        return self._stop_event.is_set()

    def issued_by_worker(self) -> dict[int, int]:
        """Requests each finished worker issued, keyed by worker index."""
        return dict(self._issued)

    async def run(self, concurrency: int, deadline: float) -> None:
        """Start *concurrency* workers and block until they all exit.

        Args:
            concurrency: Number of workers to start.
            deadline: Monotonic time after which no request may start.
        """
        self.scale_to(concurrency, deadline)
        await self.join()

    def scale_to(self, target: int, deadline: float) -> int:
        """Grow the number of started workers to *target*.

        The pool never shrinks; a *target* at or below the current size is
        a no-op. Workers added here observe *deadline*.

        Args:
            target: Desired number of workers.
            deadline: Monotonic time after which no request may start.

        Returns:
            Number of workers added.
        """
        if self._stop_event.is_set():
            return 0

        added = 0
        while len(self._tasks) < target:
            index = len(self._tasks)
            task = asyncio.create_task(
                self._run_worker(index, deadline),
                name=f"fleetload-worker-{index}",
            )
            self._tasks.append(task)
            added += 1

        if added:
            logger.debug("Started %d workers (total %d)", added, len(self._tasks))
        return added

    async def join(self) -> None:
        """Wait for every started worker to exit."""
        if self._tasks:
            await asyncio.gather(*self._tasks)

    def cancel(self) -> None:
        """Ask every worker to stop before its next iteration."""
        if not self._stop_event.is_set():
            logger.info("Cancelling %d active workers", self.active_workers)
        self._stop_event.set()

    async def wait_cancelled(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds, returning early on cancellation.

        Returns:
            True if the pool was cancelled.
        """
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        return self._stop_event.is_set()

    async def _run_worker(self, index: int, deadline: float) -> int:
        issued = 0
        next_start = self._clock()
        async with self._executor_factory() as executor:
            while not self._stop_event.is_set() and self._clock() < deadline:
                outcome = await executor.execute(self.target, self.request_timeout)
                self._aggregator.record(outcome)
                issued += 1

                # Slow responses move the schedule forward instead of bursting to catch up.
                next_start = max(next_start + self.request_delay, self._clock())
                if next_start >= deadline:
                    break
                wait = next_start - self._clock()
                if wait > 0:
                    await self.wait_cancelled(wait)

        self._issued[index] = issued
        logger.debug("Worker %d finished after %d requests", index, issued)
        return issued
