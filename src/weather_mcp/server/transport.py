"""
Transport contract shared by the streaming and request-scoped variants.

A transport is the outbound half of one session: the dispatcher and the
notification broadcaster write envelopes to it with ``send`` and never need to
know how those envelopes reach the client.
"""

import abc
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from enum import Enum

import anyio

from weather_mcp.shared.exceptions import TransportClosedError
from weather_mcp.types import JSONRPCNotification, OutboundMessage, RequestId

logger = logging.getLogger(__name__)


class TransportState(Enum):
    Uninitialized = 1
    Active = 2
    Closing = 3
    Closed = 4


_VALID_TRANSITIONS: dict[TransportState, frozenset[TransportState]] = {
    TransportState.Uninitialized: frozenset({TransportState.Active, TransportState.Closed}),
    TransportState.Active: frozenset({TransportState.Closing}),
    TransportState.Closing: frozenset({TransportState.Closed}),
    TransportState.Closed: frozenset(),
}

CloseCallback = Callable[["Transport"], None]


class CallReplies:
    """Outbound envelopes owed to one inbound HTTP call.

    Notifications handed over when the call opens come first, followed by the
    responses in the order their requests appeared in the call.
    """

    def __init__(
        self,
        request_ids: Sequence[RequestId] = (),
        preamble: Sequence[JSONRPCNotification] = (),
    ):
        self.request_ids = list(request_ids)
        self._preamble = list(preamble)
        self._responses: dict[RequestId, OutboundMessage] = {}

    def deliver(self, message: OutboundMessage) -> None:
        self._responses[message.id] = message  # type: ignore[union-attr]

    def collect(self) -> list[OutboundMessage]:
        replies: list[OutboundMessage] = list(self._preamble)
        replies.extend(self._responses[i] for i in self.request_ids if i in self._responses)
        return replies


class Transport(abc.ABC):
    """
    Base class for session transports.

    Subclasses implement ``_write`` (put one envelope on the wire) and
    ``_release`` (free the underlying I/O). The base class owns the state
    machine, write serialization and close callbacks:

    * ``send`` holds a per-transport lock, so frames from a dispatcher reply
      and a concurrent broadcast are never interleaved.
    * ``close`` waits for the in-flight write, releases I/O and runs the close
      callbacks exactly once, whether the close was requested, caused by a
      client disconnect, or caused by a failed write.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._state = TransportState.Uninitialized
        self._write_lock = anyio.Lock()
        self._closed = anyio.Event()
        self._close_callbacks: list[CloseCallback] = []

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is TransportState.Closed

    def _transition(self, new_state: TransportState) -> None:
        if new_state not in _VALID_TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid transport state transition {self._state.name} -> {new_state.name} "
                f"for session {self.session_id}"
            )
        logger.debug(f"Transport {self.session_id}: {self._state.name} -> {new_state.name}")
        self._state = new_state

    def _bind(self) -> None:
        """Mark the transport as attached to a live HTTP exchange."""
        self._transition(TransportState.Active)

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback to run once the transport is closed."""
        if self.is_closed:
            self._run_close_callback(callback)
            return
        self._close_callbacks.append(callback)

    def _run_close_callback(self, callback: CloseCallback) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception(f"Close callback failed for session {self.session_id}")

    async def send(self, message: OutboundMessage) -> None:
        """Write one envelope to the client.

        Raises:
            TransportClosedError: if the transport is not active, or the write
                failed (in which case the transport is closed first).
        """
        if self._state is not TransportState.Active:
            raise TransportClosedError(self.session_id)

        failure: Exception | None = None
        async with self._write_lock:
            if self._state is not TransportState.Active:
                raise TransportClosedError(self.session_id)
            try:
                await self._write(message)
            except TransportClosedError:
                raise
            except Exception as exc:
                failure = exc

        if failure is not None:
            logger.warning(f"Write to session {self.session_id} failed, closing transport: {failure!r}")
            await self.close()
            raise TransportClosedError(self.session_id, "Transport write failed") from failure

    async def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        if self._state is TransportState.Uninitialized:
            self._transition(TransportState.Closed)
            self._finish_close()
            return
        if self._state is not TransportState.Active:
            await self._closed.wait()
            return

        self._transition(TransportState.Closing)
        try:
            async with self._write_lock:
                await self._release()
        finally:
            self._transition(TransportState.Closed)
            self._finish_close()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _finish_close(self) -> None:
        self._closed.set()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            self._run_close_callback(callback)
        logger.info(f"Transport closed for session {self.session_id}")

    @asynccontextmanager
    async def open_call(self, request_ids: Sequence[RequestId]) -> AsyncIterator[CallReplies]:
        """Track one inbound HTTP call carrying the given request ids.

        Transports that deliver replies out of band (the SSE stream) owe the
        call itself nothing, so the default collector stays empty.
        """
        if self._state is not TransportState.Active:
            raise TransportClosedError(self.session_id)
        yield CallReplies()

    @abc.abstractmethod
    async def _write(self, message: OutboundMessage) -> None:
        """Put one envelope on the wire."""

    @abc.abstractmethod
    async def _release(self) -> None:
        """Release the underlying I/O."""
