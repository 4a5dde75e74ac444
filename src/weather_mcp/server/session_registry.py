"""In-memory table of live sessions."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from weather_mcp.server.transport import Transport
from weather_mcp.types import Implementation

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """128 bits from the OS CSPRNG, as 32 hex characters."""
    return secrets.token_hex(16)


@dataclass
class Session:
    id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    transport: Transport | None = None

    # Filled in by the initialize handshake
    initialized: bool = False
    protocol_version: str | None = None
    client_info: Implementation | None = None


class SessionHandle:
    """Returned by ``SessionRegistry.create`` to bind the session's transport."""

    def __init__(self, registry: SessionRegistry, session: Session):
        self._registry = registry
        self.session = session

    def attach(self, transport: Transport) -> Session:
        """Bind ``transport`` to the session; closing it removes the session."""
        if transport.session_id != self.session.id:
            raise RuntimeError(
                f"Transport for session {transport.session_id} cannot be attached to session {self.session.id}"
            )
        with self._registry._lock:
            if self.session.transport is not None:
                raise RuntimeError(f"Session {self.session.id} already has a transport")
            self.session.transport = transport

        session_id = self.session.id
        transport.on_close(lambda _: self._registry.remove(session_id))
        return self.session


class SessionRegistry:
    """
    Process-wide map of session id to Session.

    Every operation holds one lock for the duration of a dictionary access,
    so creates, lookups and removals of the same id never interleave. Nothing
    awaits while the lock is held.

    Ids come from a 128-bit CSPRNG and only ``create`` inserts, so a removed id
    can never come back: a client presenting it again gets "unknown session".
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def create(self) -> tuple[str, SessionHandle]:
        session_id = generate_session_id()
        session = Session(id=session_id)
        with self._lock:
            if session_id in self._sessions:
                raise RuntimeError("Session id collision")
            self._sessions[session_id] = session
        logger.info(f"Created session {session_id}")
        return session_id, SessionHandle(self, session)

    def lookup(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info(f"Removed session {session_id}")
        return session

    def snapshot_all(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
