"""Advanced benchmark mode backed by Apache Bench (``ab``)."""

from __future__ import annotations

import asyncio
import contextlib
import csv
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from fleetload._internal.errors import BenchmarkError
from fleetload._internal.logging import get_logger
from fleetload.metrics.histogram import LatencyHistogram

logger = get_logger("engine.benchmark")

# ab issues this many requests per unit of concurrency.
REQUESTS_PER_USER = 100

_PATTERNS = {
    "complete_requests": re.compile(r"^Complete requests:\s+(\d+)", re.MULTILINE),
    "failed_requests": re.compile(r"^Failed requests:\s+(\d+)", re.MULTILINE),
    "requests_per_second": re.compile(r"^Requests per second:\s+([\d.]+)", re.MULTILINE),
    "time_per_request_ms": re.compile(r"^Time per request:\s+([\d.]+)", re.MULTILINE),
}


@dataclass(frozen=True)
class BenchmarkResult:
    """Summary parsed from an ``ab`` run.

    Attributes:
        complete_requests: Requests that completed.
        failed_requests: Requests ab counted as failed.
        requests_per_second: Mean throughput.
        time_per_request_ms: Mean time per request across concurrent users.
        latency_p50_ms: Median total time from the gnuplot data.
        latency_p95_ms: 95th percentile total time.
        latency_p99_ms: 99th percentile total time.
    """

    complete_requests: int
    failed_requests: int
    requests_per_second: float
    time_per_request_ms: float
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    latency_p99_ms: float = 0.0


def parse_ab_output(output: str) -> dict[str, float]:
    """Extract the summary figures from ab's stdout.

    Args:
        output: Text printed by ab.

    Returns:
        Mapping of field name to value for every figure that was found.
    """
    values: dict[str, float] = {}
    for key, pattern in _PATTERNS.items():
        match = pattern.search(output)
        if match:
            values[key] = float(match.group(1))
    return values


def read_gnuplot_latencies(path: Path) -> LatencyHistogram:
    """Load per-request total times (``ttime`` column, ms) from ab's -g file."""
    histogram = LatencyHistogram()
    if not path.exists():
        return histogram
    with path.open(newline="") as fh:
        for row in csv.DictReader(fh, delimiter="\t"):
            value = (row.get("ttime") or "").strip()
            if value:
                histogram.record(float(value))
    return histogram


def _benchmark_url(url: str) -> str:
    # ab rejects URLs without a path component.
    parts = urlsplit(url)
    if not parts.path:
        return parts._replace(path="/").geturl()
    return url


async def _terminate(proc: asyncio.subprocess.Process, timeout: float = 2.0) -> None:
    """Terminate *proc*, escalating to SIGKILL if it outlives *timeout*."""
    logger.warning("Terminating ab (pid %d)", proc.pid)
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except TimeoutError:
        logger.warning("ab did not exit in time, killing (pid %d)", proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


class ApacheBenchRunner:
    """Runs ``ab`` against a target and parses its results.

    Scratch files live in a temporary directory that is removed whether the
    run succeeds or fails. Cancelling :meth:`run` terminates ab before the
    directory is removed.
    """

    def __init__(
        self,
        binary: str,
        *,
        timeout: float = 10.0,
        scratch_root: str | Path | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            binary: Path to the ab executable.
            timeout: Per-request timeout passed to ab (``-s``).
            scratch_root: Parent directory for scratch files; system default
                when None.
        """
        self.binary = binary
        self.timeout = timeout
        self._scratch_root = scratch_root

    async def run(self, url: str, concurrency: int) -> BenchmarkResult:
        """Benchmark *url* with *concurrency* concurrent users.

        Args:
            url: Target URL.
            concurrency: Concurrent users; ab issues 100 requests per user.

        Returns:
            Parsed benchmark result.

        Raises:
            BenchmarkError: If ab exits non-zero or prints no summary.
        """
        total = concurrency * REQUESTS_PER_USER
        logger.info("Running ab: %d requests, concurrency %d", total, concurrency)

        with tempfile.TemporaryDirectory(prefix="fleetload-ab-", dir=self._scratch_root) as tmp:
            tsv_path = Path(tmp) / "ab_results.tsv"
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                "-n",
                str(total),
                "-c",
                str(concurrency),
                "-s",
                str(max(1, round(self.timeout))),
                "-g",
                str(tsv_path),
                _benchmark_url(url),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            try:
                raw, _ = await proc.communicate()
            finally:
                if proc.returncode is None:
                    await _terminate(proc)
            output = raw.decode("utf-8", errors="replace")

            if proc.returncode != 0:
                msg = f"ab exited with status {proc.returncode}"
                raise BenchmarkError(msg, output=output)

            values = parse_ab_output(output)
            if "requests_per_second" not in values:
                msg = "ab output did not contain a results summary"
                raise BenchmarkError(msg, output=output)

            histogram = read_gnuplot_latencies(tsv_path)

        return BenchmarkResult(
            complete_requests=int(values.get("complete_requests", 0)),
            failed_requests=int(values.get("failed_requests", 0)),
            requests_per_second=values["requests_per_second"],
            time_per_request_ms=values.get("time_per_request_ms", 0.0),
            latency_p50_ms=histogram.percentile(50.0),
            latency_p95_ms=histogram.percentile(95.0),
            latency_p99_ms=histogram.percentile(99.0),
        )
