"""Integration tests for RequestExecutor against a local server."""

from __future__ import annotations

import pytest

from fleetload.engine.executor import OutcomeStatus, RequestExecutor, classify_status


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (200, OutcomeStatus.SUCCESS),
        (204, OutcomeStatus.SUCCESS),
        (301, OutcomeStatus.SUCCESS),
        (399, OutcomeStatus.SUCCESS),
        (400, OutcomeStatus.HTTP_ERROR),
        (404, OutcomeStatus.HTTP_ERROR),
        (503, OutcomeStatus.HTTP_ERROR),
        (100, OutcomeStatus.HTTP_ERROR),
    ],
)
def test_classify_status(code, expected):
    assert classify_status(code) is expected


class TestExecute:
    async def test_success(self, target_server):
        async with RequestExecutor() as executor:
            outcome = await executor.execute(f"{target_server}/", 5.0)

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.ok
        assert outcome.status_code == 200
        assert outcome.latency_ms > 0
        assert outcome.error is None

    async def test_server_error(self, target_server):
        async with RequestExecutor() as executor:
            outcome = await executor.execute(f"{target_server}/status/500", 5.0)

        assert outcome.status is OutcomeStatus.HTTP_ERROR
        assert not outcome.ok
        assert outcome.status_code == 500

    async def test_redirect_is_not_followed(self, target_server):
        async with RequestExecutor() as executor:
            outcome = await executor.execute(f"{target_server}/redirect", 5.0)

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.status_code == 302

    async def test_timeout(self, target_server):
        async with RequestExecutor() as executor:
            outcome = await executor.execute(f"{target_server}/slow?delay=2", 0.2)

        assert outcome.status is OutcomeStatus.TIMEOUT
        assert outcome.status_code == 0
        assert outcome.latency_ms < 1500

    async def test_connection_refused(self, closed_port_url):
        async with RequestExecutor() as executor:
            outcome = await executor.execute(closed_port_url, 2.0)

        assert outcome.status is OutcomeStatus.TRANSPORT_ERROR
        assert outcome.status_code == 0
        assert outcome.error

    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError, match="context manager"):
            await RequestExecutor().execute("http://127.0.0.1/", 1.0)
