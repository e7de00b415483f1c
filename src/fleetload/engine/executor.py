"""Single-request execution and outcome classification."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

import aiohttp


class OutcomeStatus(Enum):
    """Classification of one request."""

    SUCCESS = "success"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one HTTP request.

    Attributes:
        status: Outcome classification.
        latency_ms: Observed latency in milliseconds, including failures.
        timestamp: Monotonic timestamp when the request started.
        status_code: HTTP status code, 0 when no response was received.
        error: ``"ExceptionType: message"`` for timeouts and transport errors.
    """

    status: OutcomeStatus
    latency_ms: float
    timestamp: float
    status_code: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True if the request was classified as a success."""
        return self.status is OutcomeStatus.SUCCESS


def classify_status(status_code: int) -> OutcomeStatus:
    """Map an HTTP status code to an outcome: 2xx and 3xx succeed."""
    if 200 <= status_code < 400:
        return OutcomeStatus.SUCCESS
    return OutcomeStatus.HTTP_ERROR


class RequestExecutor:
    """Issues GET requests over one ``aiohttp.ClientSession``.

    ``execute`` never raises for request failures; every failure mode is
    encoded in the returned :class:`RequestOutcome`. Only task cancellation
    propagates. The executor neither logs nor touches shared state.

    Redirects are not followed, so a 3xx response is classified as
    returned by the target.
    """

    def __init__(self, *, connection_limit: int = 10) -> None:
        self._connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> RequestExecutor:
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=self._connection_limit),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(self, target: str, timeout: float) -> RequestOutcome:
        """Send one GET to *target* and classify the result.

        Args:
            target: Absolute URL to request.
            timeout: Total timeout for the request in seconds.

        Returns:
            The classified outcome.

        Raises:
            RuntimeError: If used outside of an async context manager.
        """
        if self._session is None:
            msg = "RequestExecutor must be used as an async context manager"
            raise RuntimeError(msg)

        start = time.monotonic()
        try:
            async with self._session.get(
                target,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                await resp.read()
                status_code = resp.status
        except asyncio.CancelledError:
            raise
        except TimeoutError as exc:
            # aiohttp's ServerTimeoutError subclasses both TimeoutError and ClientError.
            return _failure(OutcomeStatus.TIMEOUT, start, exc)
        except Exception as exc:
            return _failure(OutcomeStatus.TRANSPORT_ERROR, start, exc)

        return RequestOutcome(
            status=classify_status(status_code),
            latency_ms=(time.monotonic() - start) * 1000,
            timestamp=start,
            status_code=status_code,
        )


def _failure(status: OutcomeStatus, start: float, exc: BaseException) -> RequestOutcome:
    return RequestOutcome(
        status=status,
        latency_ms=(time.monotonic() - start) * 1000,
        timestamp=start,
        error=f"{type(exc).__name__}: {exc}",
    )
