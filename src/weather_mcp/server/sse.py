"""
SSE Server Transport Module

This module implements the streaming variant of the session transport: the
client opens a long-lived GET request and every outbound envelope is pushed
to it as a Server-Sent Event, while its own requests arrive as separate POSTs
on a companion endpoint.

Example usage:
```
    # Open a session and stream it back on the GET request
    async def handle_sse(scope, receive, send):
        session = dispatcher.open_session(
            partial(SseServerTransport, message_endpoint="/messages")
        )
        await session.transport.connect_sse(scope, receive, send)
```

The first event on the stream is always ``endpoint``; its data is the URL the
client must POST its JSON-RPC messages to, with the session id bound in the
query string. All later events are ``message`` events whose data is one
JSON-RPC envelope.
"""

import json
import logging
from typing import Any

import anyio
from anyio.abc import TaskStatus
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from sse_starlette import EventSourceResponse
from starlette.types import Receive, Scope, Send

from weather_mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from weather_mcp.server.transport import Transport
from weather_mcp.types import OutboundMessage, to_wire

logger = logging.getLogger(__name__)

# Frames buffered ahead of a slow client before senders start to wait
STREAM_BUFFER_SIZE = 32


class SseServerTransport(Transport):
    """
    SSE server transport for one session.

    The HTTP response is never finalized until the transport closes; each
    ``send`` appends one event frame. A client disconnect ends the response,
    which closes the transport through the same path as an explicit close.
    """

    _stream_writer: MemoryObjectSendStream[dict[str, Any]]
    _stream_reader: MemoryObjectReceiveStream[dict[str, Any]]

    def __init__(
        self,
        session_id: str,
        message_endpoint: str,
        ping_interval: int | None = None,
    ):
        """
        Creates a new SSE server transport.

        Args:
            session_id: The session this transport belongs to
            message_endpoint: Relative path the client should POST messages to
            ping_interval: Seconds between keep-alive comments on the stream
        """
        super().__init__(session_id)
        self._message_endpoint = message_endpoint
        self._ping_interval = ping_interval
        self._stream_writer, self._stream_reader = anyio.create_memory_object_stream[dict[str, Any]](
            STREAM_BUFFER_SIZE
        )

    def endpoint_url(self, root_path: str = "") -> str:
        return f"{root_path}{self._message_endpoint}?session_id={self.session_id}"

    async def connect_sse(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """Stream this session to the client until either side closes it."""
        if scope["type"] != "http":
            logger.error("connect_sse received non-HTTP request")
            raise ValueError("connect_sse can only handle HTTP requests")

        # Queued before binding so the endpoint event is always the first frame
        self._stream_writer.send_nowait({"event": "endpoint", "data": self.endpoint_url(scope.get("root_path", ""))})
        self._bind()
        logger.info(f"SSE stream established for session {self.session_id}")
        task_status.started()

        response = EventSourceResponse(
            content=self._stream_reader,
            ping=self._ping_interval,
            headers={MCP_SESSION_ID_HEADER: self.session_id},
        )
        try:
            await response(scope, receive, send)
        finally:
            logger.debug(f"SSE response finished for session {self.session_id}")
            # Nothing reads the stream any more; a sender blocked on a full
            # buffer fails with BrokenResourceError and frees the write lock
            self._stream_reader.close()
            with anyio.CancelScope(shield=True):
                await self.close()

    async def _write(self, message: OutboundMessage) -> None:
        logger.debug(f"Sending message via SSE: {message}")
        await self._stream_writer.send({"event": "message", "data": json.dumps(to_wire(message))})

    async def _release(self) -> None:
        # Buffered frames are still flushed by the response before it ends
        await self._stream_writer.aclose()
