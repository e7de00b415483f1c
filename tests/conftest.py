"""Shared test fixtures for the fleetload test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from fleetload.monitoring.probe import ScalingSnapshot, Unavailable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from fleetload.monitoring.probe import ProbeResult


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


@pytest.fixture
def closed_port_url() -> str:
    """URL of a localhost port nothing listens on."""
    return f"http://127.0.0.1:{_get_free_port()}/"


# =============================================================================
# Target server handlers
# =============================================================================

_HITS = web.AppKey("hits", list)


async def _root_handler(request: web.Request) -> web.Response:
    """The monitored service's landing page; every hit is counted."""
    request.app[_HITS][0] += 1
    return web.Response(text="ok")


async def _hits_handler(request: web.Request) -> web.Response:
    """Number of hits on ``/`` so far."""
    return web.json_response({"hits": request.app[_HITS][0]})


async def _status_handler(request: web.Request) -> web.Response:
    """Return the status code given in the path (``/status/503``)."""
    request.app[_HITS][0] += 1
    return web.Response(status=int(request.match_info["code"]), text="status")


async def _slow_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.5"))
    await asyncio.sleep(delay)
    return web.Response(text="slow")


async def _redirect_handler(request: web.Request) -> web.Response:
    """Redirect to the landing page."""
    raise web.HTTPFound("/")


def _create_target_app() -> web.Application:
    app = web.Application()
    app[_HITS] = [0]
    app.router.add_get("/", _root_handler)
    app.router.add_get("/hits", _hits_handler)
    app.router.add_get("/status/{code}", _status_handler)
    app.router.add_get("/slow", _slow_handler)
    app.router.add_get("/redirect", _redirect_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def target_server() -> AsyncIterator[str]:
    """Aiohttp target server fixture.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_target_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_target_server() -> Iterator[str]:
    """Target server running in a background thread for sync tests.

    Used by CLI tests, where the command under test runs its own event loop
    on the main thread.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(_create_target_app())
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


# =============================================================================
# Probe doubles
# =============================================================================


class StaticProbe:
    """Probe returning a fixed snapshot and counting calls."""

    def __init__(self, desired: int = 2, instances: int = 2) -> None:
        self.calls = 0
        self._snapshot = ScalingSnapshot("test-asg", desired, instances)

    async def sample(self, fleet_name: str | None) -> ProbeResult:
        self.calls += 1
        return self._snapshot


class FailingProbe:
    """Probe that always raises, as a broken control plane would."""

    def __init__(self) -> None:
        self.calls = 0

    async def sample(self, fleet_name: str | None) -> ProbeResult:
        self.calls += 1
        msg = "control plane exploded"
        raise RuntimeError(msg)


class HangingProbe:
    """Probe that never answers within any reasonable timeout."""

    async def sample(self, fleet_name: str | None) -> ProbeResult:
        await asyncio.sleep(3600)
        return Unavailable("unreachable")


@pytest.fixture
def static_probe() -> StaticProbe:
    return StaticProbe()


@pytest.fixture
def failing_probe() -> FailingProbe:
    return FailingProbe()


@pytest.fixture
def hanging_probe() -> HangingProbe:
    return HangingProbe()
