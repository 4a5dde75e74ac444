import time

import anyio
import pytest

from weather_mcp.server.session_registry import SessionRegistry
from weather_mcp.server.shutdown import ShutdownCoordinator
from weather_mcp.server.transport import Transport
from weather_mcp.types import OutboundMessage


class BrokenCloseTransport(Transport):
    async def _write(self, message: OutboundMessage) -> None:
        pass

    async def _release(self) -> None:
        raise OSError("socket already gone")


@pytest.mark.anyio
async def test_drain_with_no_sessions(registry: SessionRegistry):
    report = await ShutdownCoordinator(registry, timeout=1).drain()
    assert report.closed == report.failed == report.timed_out == []


@pytest.mark.anyio
async def test_drain_closes_every_session(registry: SessionRegistry, add_session):
    sessions = [add_session() for _ in range(5)]

    report = await ShutdownCoordinator(registry, timeout=1).drain()

    assert sorted(report.closed) == sorted(s.id for s in sessions)
    assert len(registry) == 0
    assert all(s.transport.released for s in sessions)  # type: ignore[union-attr]


@pytest.mark.anyio
async def test_hanging_session_does_not_block_shutdown(registry: SessionRegistry, add_session):
    healthy = [add_session() for _ in range(9)]
    hanging = add_session(hang_on_close=True)
    timeout = 0.5

    start = time.monotonic()
    with anyio.fail_after(5):
        report = await ShutdownCoordinator(registry, timeout=timeout).drain()
    elapsed = time.monotonic() - start

    assert elapsed < timeout + 1
    assert sorted(report.closed) == sorted(s.id for s in healthy)
    assert report.timed_out == [hanging.id]
    assert len(registry) == 0


@pytest.mark.anyio
async def test_failing_close_is_reported_and_others_still_close(registry: SessionRegistry, add_session):
    healthy = [add_session() for _ in range(3)]
    session_id, handle = registry.create()
    broken = BrokenCloseTransport(session_id)
    broken._bind()
    handle.attach(broken)

    report = await ShutdownCoordinator(registry, timeout=1).drain()

    assert report.failed == [session_id]
    assert sorted(report.closed) == sorted(s.id for s in healthy)
    assert broken.is_closed
    assert len(registry) == 0
