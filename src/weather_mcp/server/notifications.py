"""Server-initiated notifications to one or all live sessions."""

import json
import logging
from typing import Any

import anyio

from weather_mcp.server.provider import CapabilityProvider
from weather_mcp.server.session_registry import Session, SessionRegistry
from weather_mcp.shared.exceptions import TransportClosedError
from weather_mcp.types import JSONRPCNotification

logger = logging.getLogger(__name__)

TOOL_LIST_CHANGED = "notifications/tools/list_changed"


class NotificationBroadcaster:
    """
    Best-effort delivery of notifications through session transports.

    Delivery never raises: a session that is gone, closed, or whose write
    fails is logged and skipped. Write ordering per session is handled by the
    transport's own lock.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def notify(self, session_id: str, notification: JSONRPCNotification) -> bool:
        session = self.registry.lookup(session_id)
        if session is None:
            logger.debug(f"Dropping {notification.method} for unknown session {session_id}")
            return False
        return await self._deliver(session, notification)

    async def broadcast(self, notification: JSONRPCNotification) -> int:
        """Send ``notification`` to every live session; returns how many got it."""
        sessions = self.registry.snapshot_all()
        delivered = 0

        async def deliver(session: Session) -> None:
            nonlocal delivered
            if await self._deliver(session, notification):
                delivered += 1

        async with anyio.create_task_group() as tg:
            for session in sessions:
                tg.start_soon(deliver, session)

        logger.debug(f"Broadcast {notification.method} to {delivered}/{len(sessions)} sessions")
        return delivered

    async def tool_list_changed(self) -> int:
        return await self.broadcast(JSONRPCNotification(method=TOOL_LIST_CHANGED))

    async def _deliver(self, session: Session, notification: JSONRPCNotification) -> bool:
        if session.transport is None:
            return False
        try:
            await session.transport.send(notification)
        except TransportClosedError:
            logger.info(f"Session {session.id} closed, {notification.method} not delivered")
            return False
        except Exception:
            logger.exception(f"Failed to deliver {notification.method} to session {session.id}")
            return False
        return True


class ToolListChangeNotifier:
    """
    Tells clients about tool list changes, and only about actual changes.

    ``check`` compares the provider's current tool list with the last one it
    saw and broadcasts ``notifications/tools/list_changed`` when they differ.
    ``run`` calls it every ``interval`` seconds until cancelled.
    """

    def __init__(
        self,
        provider: CapabilityProvider,
        broadcaster: NotificationBroadcaster,
        interval: float,
    ):
        self.provider = provider
        self.broadcaster = broadcaster
        self.interval = interval
        self._fingerprint = self._current_fingerprint()

    def _current_fingerprint(self) -> str:
        tools: list[dict[str, Any]] = [
            tool.model_dump(by_alias=True, mode="json", exclude_none=True) for tool in self.provider.list_tools()
        ]
        return json.dumps(tools, sort_keys=True)

    async def check(self) -> bool:
        fingerprint = self._current_fingerprint()
        if fingerprint == self._fingerprint:
            return False
        self._fingerprint = fingerprint
        logger.info("Tool list changed, notifying sessions")
        await self.broadcaster.tool_list_changed()
        return True

    async def run(self) -> None:
        while True:
            await anyio.sleep(self.interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Tool list check failed")
