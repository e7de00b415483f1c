"""Top-level load-test orchestration.

The driver is a one-shot state machine::

    IDLE -> REACHABILITY_CHECK -> [BASIC_RUN] -> [BENCHMARK_RUN] -> [RAMP_RUN]
         -> REPORTING -> DONE
    REACHABILITY_CHECK -> ABORTED

Each run state is entered at most once, in that order, for the modes the
caller selected. A failed reachability check is the only way to ABORTED and
happens before any worker exists.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

from fleetload._internal.errors import BenchmarkError, ConfigError, EngineError, ReachabilityError
from fleetload._internal.logging import get_logger
from fleetload.engine.benchmark import ApacheBenchRunner, BenchmarkResult
from fleetload.engine.executor import OutcomeStatus, RequestExecutor
from fleetload.engine.pool import WorkerPool
from fleetload.engine.ramp import RampController, RampStep, build_schedule
from fleetload.metrics.aggregator import MetricsAggregator
from fleetload.monitoring.probe import sample_with_timeout

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from fleetload._internal.config import TestConfig
    from fleetload.engine.executor import RequestOutcome
    from fleetload.metrics.models import AggregateStats
    from fleetload.monitoring.capabilities import Capabilities
    from fleetload.monitoring.probe import ProbeResult, ScalingStateProbe

logger = get_logger("engine.driver")


class DriverState(Enum):
    """Lifecycle of a :class:`TestDriver`."""

    IDLE = auto()
    REACHABILITY_CHECK = auto()
    BASIC_RUN = auto()
    BENCHMARK_RUN = auto()
    RAMP_RUN = auto()
    REPORTING = auto()
    DONE = auto()
    ABORTED = auto()


class TestMode(Enum):
    """Load-test modes, listed in execution order."""

    __test__ = False

    BASIC = "basic"
    BENCHMARK = "benchmark"
    RAMP = "ramp"


_MODE_STATES = {
    TestMode.BASIC: DriverState.BASIC_RUN,
    TestMode.BENCHMARK: DriverState.BENCHMARK_RUN,
    TestMode.RAMP: DriverState.RAMP_RUN,
}


@dataclass(frozen=True)
class ProgressUpdate:
    """One reporting tick.

    Attributes:
        mode: Mode that emitted the tick.
        elapsed: Seconds since the phase started.
        total: Planned length of the phase in seconds.
        scaling: Scaling sample taken for this tick.
        stats: Aggregate totals at the time of the tick.
        active_workers: Workers running at the time of the tick.
        step: Ramp step that just completed, for ramp ticks.
    """

    mode: TestMode
    elapsed: float
    total: float
    scaling: ProbeResult
    stats: AggregateStats
    active_workers: int
    step: RampStep | None = None

    @property
    def percent(self) -> int:
        return min(100, int(self.elapsed * 100 / self.total))


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one run phase.

    Attributes:
        mode: Mode of the phase.
        elapsed_seconds: Wall-clock length of the phase.
        stats: Aggregate totals for load phases, None for the benchmark.
        benchmark: Parsed ab result for the benchmark phase.
        error: Failure description when the phase could not complete.
        ticks: Progress updates emitted during the phase.
    """

    mode: TestMode
    elapsed_seconds: float
    stats: AggregateStats | None = None
    benchmark: BenchmarkResult | None = None
    error: str | None = None
    ticks: list[ProgressUpdate] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def requests_per_second(self) -> float | None:
        if self.benchmark is not None:
            return self.benchmark.requests_per_second
        if self.stats is None:
            return None
        return self.stats.rate(self.elapsed_seconds)


@dataclass(frozen=True)
class DriverReport:
    """Everything the driver learned during one invocation.

    Attributes:
        phases: Results in execution order.
        totals: Load-phase totals merged across phases.
        initial_scaling: Scaling sample taken before the first phase.
        final_scaling: Scaling sample taken after the last phase.
        cancelled: True if the run was stopped early by a signal.
    """

    phases: list[PhaseResult]
    totals: AggregateStats
    initial_scaling: ProbeResult
    final_scaling: ProbeResult
    cancelled: bool = False


def order_modes(modes: Iterable[TestMode]) -> list[TestMode]:
    """Deduplicate *modes* and sort them into execution order."""
    selected = set(modes)
    return [mode for mode in TestMode if mode in selected]


class TestDriver:
    """Runs a complete load test against one target.

    Call :meth:`check_reachability` first; :meth:`run` refuses to start
    otherwise. Request failures, probe failures and benchmark failures are
    recorded as data. Only an unreachable target or invalid configuration
    raise.

    Attributes:
        config: Parameters of this invocation.
    """

    __test__ = False

    def __init__(
        self,
        config: TestConfig,
        probe: ScalingStateProbe,
        *,
        capabilities: Capabilities | None = None,
        on_progress: Callable[[ProgressUpdate], None] | None = None,
        executor_factory: Callable[[], RequestExecutor] = RequestExecutor,
        handle_signals: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the driver.

        Args:
            config: Parameters of this invocation.
            probe: Scaling-state source sampled for progress reports.
            capabilities: Detected optional tooling; None means none.
            on_progress: Callback invoked with every progress update.
            executor_factory: Builds request executors for the pool and the
                reachability check.
            handle_signals: Install SIGINT/SIGTERM handlers during the run.
            clock: Monotonic clock shared with pools and controllers.
        """
        self.config = config
        self._probe = probe
        self._capabilities = capabilities
        self._on_progress = on_progress
        self._executor_factory = executor_factory
        self._handle_signals = handle_signals
        self._clock = clock

        self._state = DriverState.IDLE
        self._totals = MetricsAggregator()
        self._active_pool: WorkerPool | None = None
        self._active_benchmark: asyncio.Task[BenchmarkResult] | None = None
        self._cancelled = False

    @property
    def state(self) -> DriverState:
        return self._state

    def totals(self) -> AggregateStats:
        """Return totals recorded across all finished load phases."""
        return self._totals.snapshot()

    async def check_reachability(self) -> RequestOutcome:
        """Issue the pre-flight request; require exactly HTTP 200.

        Returns:
            The successful outcome.

        Raises:
            EngineError: If called more than once.
            ReachabilityError: If the target did not answer with HTTP 200.
        """
        if self._state is not DriverState.IDLE:
            msg = f"reachability check not allowed in state {self._state.name}"
            raise EngineError(msg)

        self._state = DriverState.REACHABILITY_CHECK
        url = self.config.target_url
        logger.info("Testing connectivity to %s", url)

        async with self._executor_factory() as executor:
            outcome = await executor.execute(url, self.config.reachability_timeout)

        if outcome.status is not OutcomeStatus.SUCCESS or outcome.status_code != 200:
            self._state = DriverState.ABORTED
            detail = outcome.error or f"HTTP {outcome.status_code}"
            msg = f"{url} is not responding properly ({outcome.status.value}: {detail})"
            raise ReachabilityError(msg, outcome=outcome)

        logger.info("Target is responding (HTTP 200, %.1fms)", outcome.latency_ms)
        return outcome

    async def sample_scaling(self) -> ProbeResult:
        """Take one bounded scaling sample."""
        return await sample_with_timeout(
            self._probe,
            self.config.fleet_name,
            self.config.probe_timeout,
        )

    async def run(self, modes: Iterable[TestMode]) -> DriverReport:
        """Run the selected modes in order and build the final report.

        Args:
            modes: Modes to run; duplicates are ignored.

        Returns:
            Report with one phase result per mode.

        Raises:
            EngineError: If the reachability check has not passed.
            ConfigError: If the selection is empty or incompatible with the
                configuration or the available tooling.
        """
        if self._state is not DriverState.REACHABILITY_CHECK:
            msg = f"run not allowed in state {self._state.name}"
            raise EngineError(msg)

        selected = self._validate_modes(modes)
        initial = await self.sample_scaling()
        logger.info("Initial fleet state: %s", initial.describe())

        self._install_signal_handlers()
        phases: list[PhaseResult] = []
        try:
            for mode in selected:
                if self._cancelled:
                    break
                self._state = _MODE_STATES[mode]
                logger.info("Starting %s run", mode.value, extra={"phase": mode.value})
                if mode is TestMode.BASIC:
                    phases.append(await self._run_basic())
                elif mode is TestMode.BENCHMARK:
                    phases.append(await self._run_benchmark())
                else:
                    phases.append(await self._run_ramp())
        finally:
            self._remove_signal_handlers()

        self._state = DriverState.REPORTING
        final = await self.sample_scaling()
        report = DriverReport(
            phases=phases,
            totals=self._totals.snapshot(),
            initial_scaling=initial,
            final_scaling=final,
            cancelled=self._cancelled,
        )
        self._state = DriverState.DONE
        logger.info(
            "Load testing completed: %d requests, %d failures; %s",
            report.totals.requests,
            report.totals.failures,
            final.describe(),
        )
        return report

    def stop(self) -> None:
        """Stop the active phase and skip the remaining ones.

        Load phases let in-flight requests finish; a running benchmark has
        its ab process terminated.
        """
        self._cancelled = True
        if self._active_pool is not None:
            self._active_pool.cancel()
        if self._active_benchmark is not None:
            self._active_benchmark.cancel()

    def _validate_modes(self, modes: Iterable[TestMode]) -> list[TestMode]:
        selected = order_modes(modes)
        if not selected:
            msg = "at least one test mode must be selected"
            raise ConfigError(msg)
        if TestMode.RAMP in selected:
            self.config.validate_for_ramp()
        if TestMode.BENCHMARK in selected and (
            self._capabilities is None or not self._capabilities.has_benchmark_tool
        ):
            msg = "benchmark mode requires Apache Bench (ab) to be installed"
            raise ConfigError(msg)
        return selected

    def _new_pool(self, aggregator: MetricsAggregator) -> WorkerPool:
        pool = WorkerPool(
            self.config.target_url,
            aggregator,
            request_timeout=self.config.request_timeout,
            request_delay=self.config.request_delay,
            executor_factory=self._executor_factory,
            clock=self._clock,
        )
        self._active_pool = pool
        return pool

    async def _run_basic(self) -> PhaseResult:
        config = self.config
        aggregator = MetricsAggregator()
        pool = self._new_pool(aggregator)
        ticks: list[ProgressUpdate] = []
        logger.info(
            "Basic load test: %d concurrent workers for %.0fs",
            config.concurrency,
            config.duration,
        )

        start = self._clock()
        reporter = asyncio.create_task(
            self._report_periodically(pool, aggregator, start, ticks),
            name="fleetload-reporter",
        )
        try:
            await pool.run(config.concurrency, start + config.duration)
        finally:
            reporter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reporter
            self._active_pool = None

        elapsed = self._clock() - start
        self._totals.merge(aggregator)
        return PhaseResult(
            mode=TestMode.BASIC,
            elapsed_seconds=elapsed,
            stats=aggregator.snapshot(),
            ticks=ticks,
        )

    async def _report_periodically(
        self,
        pool: WorkerPool,
        aggregator: MetricsAggregator,
        start: float,
        ticks: list[ProgressUpdate],
    ) -> None:
        interval = self.config.report_interval
        duration = self.config.duration
        tick = 1
        while tick * interval < duration:
            wait = start + tick * interval - self._clock()
            if wait > 0:
                await asyncio.sleep(wait)
            scaling = await self.sample_scaling()
            update = ProgressUpdate(
                mode=TestMode.BASIC,
                elapsed=tick * interval,
                total=duration,
                scaling=scaling,
                stats=aggregator.snapshot(),
                active_workers=pool.active_workers,
            )
            ticks.append(update)
            self._emit(update)
            tick += 1

    async def _run_ramp(self) -> PhaseResult:
        config = self.config
        aggregator = MetricsAggregator()
        pool = self._new_pool(aggregator)
        steps = build_schedule(config.concurrency, config.ramp_up, config.ramp_steps)
        total = config.duration if config.hold else config.ramp_up
        ticks: list[ProgressUpdate] = []
        logger.info(
            "Ramp-up test: %d steps to %d workers over %.0fs%s",
            len(steps),
            config.concurrency,
            config.ramp_up,
            f", holding until {config.duration:.0f}s" if config.hold else "",
        )

        start = self._clock()

        async def _on_step(step: RampStep) -> None:
            elapsed = self._clock() - start
            scaling = await self.sample_scaling()
            update = ProgressUpdate(
                mode=TestMode.RAMP,
                elapsed=elapsed,
                total=total,
                scaling=scaling,
                stats=aggregator.snapshot(),
                active_workers=pool.active_workers,
                step=step,
            )
            ticks.append(update)
            self._emit(update)

        controller = RampController(pool, steps, on_step=_on_step, clock=self._clock)
        try:
            await controller.run(hold_until=start + config.duration if config.hold else None)
        finally:
            self._active_pool = None

        # Step ticks finish in probe order, not step order.
        ticks.sort(key=lambda update: update.step.index if update.step else 0)

        elapsed = self._clock() - start
        self._totals.merge(aggregator)
        return PhaseResult(
            mode=TestMode.RAMP,
            elapsed_seconds=elapsed,
            stats=aggregator.snapshot(),
            ticks=ticks,
        )

    async def _run_benchmark(self) -> PhaseResult:
        tool = self._capabilities.benchmark_tool if self._capabilities else None
        if tool is None:
            msg = "benchmark run started without Apache Bench"
            raise EngineError(msg)
        runner = ApacheBenchRunner(tool, timeout=self.config.request_timeout)

        start = self._clock()
        task = asyncio.create_task(
            runner.run(self.config.target_url, self.config.concurrency),
            name="fleetload-benchmark",
        )
        self._active_benchmark = task
        try:
            result = await task
        except asyncio.CancelledError:
            # Only a stop() request ends the phase; outer cancellation propagates.
            if not self._cancelled or not task.cancelled():
                raise
            logger.warning("Apache Bench test stopped before completion")
            return PhaseResult(
                mode=TestMode.BENCHMARK,
                elapsed_seconds=self._clock() - start,
                error="stopped before completion",
            )
        except BenchmarkError as exc:
            logger.error("Apache Bench test failed: %s\n%s", exc, exc.output)
            return PhaseResult(
                mode=TestMode.BENCHMARK,
                elapsed_seconds=self._clock() - start,
                error=str(exc),
            )
        finally:
            self._active_benchmark = None

        return PhaseResult(
            mode=TestMode.BENCHMARK,
            elapsed_seconds=self._clock() - start,
            benchmark=result,
        )

    def _emit(self, update: ProgressUpdate) -> None:
        logger.info(
            "Progress: %d%% (%.0f/%.0f seconds) | %s",
            update.percent,
            update.elapsed,
            update.total,
            update.scaling.describe(),
            extra={"phase": update.mode.value},
        )
        if self._on_progress is not None:
            self._on_progress(update)

    def _install_signal_handlers(self) -> None:
        if not self._handle_signals:
            return

        def _signal_handler() -> None:
            logger.info("Signal received, stopping workers")
            self.stop()

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())

    def _remove_signal_handlers(self) -> None:
        if not self._handle_signals:
            return

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
