"""
StreamableHTTP Server Transport Module

This module implements the request-scoped variant of the session transport.
Every JSON-RPC call from the client is its own HTTP POST carrying the
``Mcp-Session-Id`` header, and the replies owed to that call are written onto
that call's response. One transport object serves all calls of a session.

Server-initiated notifications have no call to ride on when they are sent.
They are queued and handed to the next inbound call, ahead of that call's own
responses. The queue is bounded; once full, the oldest notification is dropped.
"""

import logging
from collections import deque
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Final

from weather_mcp.server.transport import CallReplies, Transport, TransportState
from weather_mcp.shared.exceptions import StructuralError, TransportClosedError
from weather_mcp.types import (
    INVALID_REQUEST,
    ErrorData,
    JSONRPCNotification,
    OutboundMessage,
    RequestId,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER: Final[str] = "mcp-session-id"

# Notifications kept for a session between calls; the oldest are dropped first
DEFAULT_MAX_PENDING_NOTIFICATIONS: Final[int] = 100


class StreamableHTTPServerTransport(Transport):
    """
    Request-scoped transport for one session.

    Responses are routed by request id to the open call that carries the
    request; notifications wait in a queue for the next call.
    """

    def __init__(self, session_id: str, max_pending_notifications: int = DEFAULT_MAX_PENDING_NOTIFICATIONS):
        super().__init__(session_id)
        # Open calls keyed by the request ids they carry
        self._request_streams: dict[RequestId, CallReplies] = {}
        self._pending_notifications: deque[JSONRPCNotification] = deque(maxlen=max_pending_notifications)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending_notifications)

    @asynccontextmanager
    async def open_call(self, request_ids: Sequence[RequestId]) -> AsyncIterator[CallReplies]:
        if self._state is TransportState.Uninitialized:
            self._bind()
        if self._state is not TransportState.Active:
            raise TransportClosedError(self.session_id)

        duplicates = [i for i in request_ids if i in self._request_streams]
        if duplicates:
            raise StructuralError(
                ErrorData(
                    code=INVALID_REQUEST,
                    message=f"Request id {duplicates[0]!r} is already in flight for this session",
                )
            )

        preamble = list(self._pending_notifications)
        self._pending_notifications.clear()
        call = CallReplies(request_ids, preamble)
        for request_id in request_ids:
            self._request_streams[request_id] = call
        try:
            yield call
        finally:
            for request_id in request_ids:
                if self._request_streams.get(request_id) is call:
                    del self._request_streams[request_id]

    async def _write(self, message: OutboundMessage) -> None:
        if isinstance(message, JSONRPCNotification):
            if self._pending_notifications and len(self._pending_notifications) == self._pending_notifications.maxlen:
                dropped = self._pending_notifications[0]
                logger.warning(
                    f"Notification queue full for session {self.session_id}, dropping oldest {dropped.method}"
                )
            self._pending_notifications.append(message)
            logger.debug(f"Queued notification {message.method} for session {self.session_id}")
            return

        call = self._request_streams.get(message.id) if message.id is not None else None
        if call is None:
            logger.warning(f"No open call for response to request {message.id} on session {self.session_id}, dropping")
            return
        call.deliver(message)

    async def _release(self) -> None:
        if self._pending_notifications:
            logger.debug(
                f"Discarding {len(self._pending_notifications)} undelivered notifications for session {self.session_id}"
            )
        self._pending_notifications.clear()
