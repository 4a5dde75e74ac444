from collections.abc import Callable
from typing import Any

import anyio
import pytest
import sse_starlette
from packaging import version
from starlette.types import Message

from weather_mcp.server.dispatcher import Dispatcher
from weather_mcp.server.session_registry import Session, SessionRegistry
from weather_mcp.server.transport import Transport
from weather_mcp.shared.exceptions import InvalidArgumentsError, InvocationError
from weather_mcp.types import CallToolResult, Implementation, OutboundMessage, TextContent, Tool


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. Only sse-starlette < 3.0.0 keeps this module-level state.
    """
    if not NEEDS_RESET:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


class MemoryTransport(Transport):
    """Transport that records what it is sent instead of writing to a socket."""

    def __init__(self, session_id: str, *, fail_writes: bool = False, hang_on_close: bool = False):
        super().__init__(session_id)
        self.sent: list[OutboundMessage] = []
        self.fail_writes = fail_writes
        self.hang_on_close = hang_on_close
        self.released = False

    def activate(self) -> "MemoryTransport":
        self._bind()
        return self

    async def _write(self, message: OutboundMessage) -> None:
        if self.fail_writes:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(message)

    async def _release(self) -> None:
        if self.hang_on_close:
            await anyio.sleep_forever()
        self.released = True


class FakeProvider:
    """Capability provider with one tool per outcome the dispatcher handles."""

    def __init__(self) -> None:
        self.tools = [
            Tool(
                name="echo",
                description="Echo the text argument",
                input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
            ),
            Tool(name="unavailable", description="Always fails upstream", input_schema={"type": "object"}),
            Tool(name="strict", description="Rejects its arguments", input_schema={"type": "object"}),
            Tool(name="crash", description="Raises an unexpected error", input_schema={"type": "object"}),
        ]
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def list_tools(self) -> list[Tool]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        self.calls.append((name, arguments))
        match name:
            case "echo":
                return CallToolResult(content=[TextContent(text=str(arguments.get("text", "")))])
            case "unavailable":
                raise InvocationError("Failed to retrieve alerts data from weather service")
            case "strict":
                raise InvalidArgumentsError("state must be a two-letter code")
            case _:
                raise RuntimeError("boom")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def dispatcher(registry: SessionRegistry, provider: FakeProvider) -> Dispatcher:
    return Dispatcher(registry, provider, server_info=Implementation(name="weather-sse-server", version="1.0.0"))


@pytest.fixture
def make_transport() -> Callable[..., MemoryTransport]:
    return MemoryTransport


@pytest.fixture
def add_session(registry: SessionRegistry) -> Callable[..., Session]:
    """Register a session backed by an active MemoryTransport."""

    def add(**transport_options: Any) -> Session:
        session_id, handle = registry.create()
        return handle.attach(MemoryTransport(session_id, **transport_options).activate())

    return add


class FakeSseClient:
    """ASGI receive/send pair for a GET that stays connected until ``disconnect``.

    With ``stalled`` set, the client accepts the response headers but never
    reads any of the body, like a peer whose TCP window stays full.
    """

    def __init__(self) -> None:
        self.sent: list[Message] = []
        self.stalled = False
        self._disconnected = anyio.Event()

    async def receive(self) -> Message:
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Message) -> None:
        if self.stalled and message["type"] == "http.response.body":
            await anyio.sleep_forever()
        self.sent.append(message)

    def disconnect(self) -> None:
        self._disconnected.set()

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.sent if m["type"] == "http.response.body")

    async def wait_for(self, fragment: bytes) -> None:
        with anyio.fail_after(5):
            while fragment not in self.body:
                await anyio.sleep(0.01)


@pytest.fixture
def sse_client() -> FakeSseClient:
    return FakeSseClient()
