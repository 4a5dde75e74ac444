"""Draining live sessions when the server stops."""

import logging
from dataclasses import dataclass, field

import anyio

from weather_mcp.server.session_registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 5.0


@dataclass
class DrainReport:
    closed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    timed_out: list[str] = field(default_factory=list)


class ShutdownCoordinator:
    """
    Closes every live session concurrently, bounded by ``timeout``.

    A session whose close raises is logged and counted as failed; one whose
    close has not finished when the timeout expires is abandoned. Either way
    the session is removed from the registry and the remaining sessions are
    still closed.
    """

    def __init__(self, registry: SessionRegistry, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT):
        self.registry = registry
        self.timeout = timeout

    async def drain(self) -> DrainReport:
        sessions = self.registry.snapshot_all()
        report = DrainReport()
        if not sessions:
            return report

        logger.info(f"Closing {len(sessions)} active sessions...")
        pending = {session.id for session in sessions}

        async def close_one(session: Session) -> None:
            try:
                if session.transport is not None:
                    await session.transport.close()
            except Exception:
                logger.exception(f"Failed to close session {session.id}")
                report.failed.append(session.id)
            else:
                report.closed.append(session.id)
            # Not reached when cancelled by the timeout, so the id stays pending
            pending.discard(session.id)
            self.registry.remove(session.id)

        with anyio.move_on_after(self.timeout) as scope:
            async with anyio.create_task_group() as tg:
                for session in sessions:
                    tg.start_soon(close_one, session)

        if scope.cancelled_caught:
            report.timed_out = sorted(pending)
            logger.warning(
                f"Graceful shutdown timed out after {self.timeout}s, abandoning {len(report.timed_out)} sessions"
            )
            for session_id in report.timed_out:
                self.registry.remove(session_id)

        logger.info(
            f"Session drain finished: {len(report.closed)} closed, "
            f"{len(report.failed)} failed, {len(report.timed_out)} timed out"
        )
        return report
