"""
Starlette application serving a capability provider over MCP.

Routes (paths come from Settings):

* ``GET  /sse``       opens a session whose replies stream back as SSE
* ``POST /messages``  companion endpoint for SSE sessions (``?session_id=``)
* ``POST /mcp``       request-scoped calls; bootstraps without ``Mcp-Session-Id``
* ``DELETE /mcp``     terminates a session
* ``GET  /health``    liveness and session count
* ``GET  /``          server name, endpoints and tool names
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import AsyncIterator
from functools import partial
from http import HTTPStatus

import anyio
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from weather_mcp.server.dispatcher import DispatchOutcome, Dispatcher
from weather_mcp.server.notifications import NotificationBroadcaster, ToolListChangeNotifier
from weather_mcp.server.provider import CapabilityProvider
from weather_mcp.server.session_registry import SessionRegistry
from weather_mcp.server.settings import Settings
from weather_mcp.server.shutdown import ShutdownCoordinator
from weather_mcp.server.sse import SseServerTransport
from weather_mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from weather_mcp.shared.exceptions import StructuralError
from weather_mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
    Implementation,
    JSONRPCError,
    to_wire,
)

logger = logging.getLogger(__name__)

_CLIENT_ERROR_CODES = frozenset({PARSE_ERROR, INVALID_REQUEST, INVALID_PARAMS, METHOD_NOT_FOUND})


def error_response(
    error: ErrorData,
    status_code: int,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(to_wire(JSONRPCError(id=None, error=error)), status_code=status_code, headers=headers)


def reply_status(outcome: DispatchOutcome) -> int:
    """HTTP status mirroring the reply to a single (non-batch) request."""
    if outcome.is_batch or not outcome.replies:
        return HTTPStatus.OK
    last = outcome.replies[-1]
    if isinstance(last, JSONRPCError):
        if last.error.code in _CLIENT_ERROR_CODES:
            return HTTPStatus.BAD_REQUEST
        return HTTPStatus.INTERNAL_SERVER_ERROR
    return HTTPStatus.OK


class _MessageHandling:
    def __init__(self, dispatcher: Dispatcher, settings: Settings):
        self.dispatcher = dispatcher
        self.settings = settings

    async def _read_body(self, request: Request) -> bytes | Response:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            return error_response(
                ErrorData(code=INVALID_REQUEST, message="Unsupported Media Type: Content-Type must be application/json"),
                HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
            )
        body = await request.body()
        if len(body) > self.settings.max_body_bytes:
            return error_response(
                ErrorData(code=INVALID_REQUEST, message="Payload Too Large: Message exceeds maximum size"),
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            )
        return body

    async def _dispatch(self, request: Request, session_id: str | None) -> Response:
        body = await self._read_body(request)
        if isinstance(body, Response):
            return body

        try:
            outcome = await self.dispatcher.handle(session_id, body)
        except StructuralError as e:
            logger.debug(f"Rejected call: {e}")
            return error_response(e.error, e.status_code)
        except Exception:
            logger.exception("Error handling POST request")
            return error_response(
                ErrorData(code=INTERNAL_ERROR, message="Internal server error"),
                HTTPStatus.INTERNAL_SERVER_ERROR,
            )

        headers = {MCP_SESSION_ID_HEADER: outcome.session_id}
        if not outcome.replies:
            return Response("Accepted", status_code=HTTPStatus.ACCEPTED, headers=headers)

        wire = [to_wire(reply) for reply in outcome.replies]
        content = wire if outcome.is_batch or len(wire) > 1 else wire[0]
        return JSONResponse(content, status_code=reply_status(outcome), headers=headers)


class SseEndpoint(_MessageHandling):
    """GET: open a streaming session and hold the response open."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        factory = partial(
            SseServerTransport,
            message_endpoint=self.settings.message_path,
            ping_interval=self.settings.sse_ping_interval,
        )
        session = self.dispatcher.open_session(factory)
        transport = session.transport
        assert isinstance(transport, SseServerTransport)
        await transport.connect_sse(scope, receive, send)


class MessageEndpoint(_MessageHandling):
    """POST: JSON-RPC messages for a streaming session; replies go to its stream."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = (
            request.query_params.get("session_id")
            or request.query_params.get("sessionId")
            or request.headers.get(MCP_SESSION_ID_HEADER)
        )
        if not session_id:
            logger.warning("Received request without session_id")
            response: Response = error_response(
                ErrorData(code=INVALID_REQUEST, message="Missing session_id query parameter"),
                HTTPStatus.BAD_REQUEST,
            )
        else:
            response = await self._dispatch(request, session_id)
        await response(scope, receive, send)


class StreamableHTTPEndpoint(_MessageHandling):
    """POST/DELETE: request-scoped calls and session termination."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        if request.method == "POST":
            response = await self._dispatch(request, request.headers.get(MCP_SESSION_ID_HEADER))
        elif request.method == "DELETE":
            response = await self._terminate(request)
        else:
            response = error_response(
                ErrorData(code=INVALID_REQUEST, message="Method Not Allowed"),
                HTTPStatus.METHOD_NOT_ALLOWED,
                headers={"Allow": "POST, DELETE"},
            )
        await response(scope, receive, send)

    async def _terminate(self, request: Request) -> Response:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        if not session_id:
            return error_response(
                ErrorData(code=INVALID_REQUEST, message="Bad Request: No valid session ID provided"),
                HTTPStatus.BAD_REQUEST,
            )
        session = self.dispatcher.registry.lookup(session_id)
        if session is None or session.transport is None:
            return error_response(
                ErrorData(code=INVALID_REQUEST, message="Session not found"),
                HTTPStatus.NOT_FOUND,
            )
        await session.transport.close()
        logger.info(f"Session {session_id} terminated by client request")
        return Response(status_code=HTTPStatus.OK)


def create_app(provider: CapabilityProvider, settings: Settings | None = None) -> Starlette:
    """Build the ASGI application, with its own session registry, for ``provider``."""
    settings = settings or Settings()

    registry = SessionRegistry()
    dispatcher = Dispatcher(
        registry,
        provider,
        server_info=Implementation(name=settings.server_name, version=settings.server_version),
        instructions=settings.instructions,
        transport_factory=partial(
            StreamableHTTPServerTransport,
            max_pending_notifications=settings.max_pending_notifications,
        ),
    )
    broadcaster = NotificationBroadcaster(registry)
    coordinator = ShutdownCoordinator(registry, timeout=settings.shutdown_timeout)
    notifier = (
        ToolListChangeNotifier(provider, broadcaster, settings.tool_list_poll_interval)
        if settings.tool_list_poll_interval
        else None
    )
    started_at = time.monotonic()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with anyio.create_task_group() as tg:
            if notifier is not None:
                tg.start_soon(notifier.run)
            logger.info(f"{settings.server_name} started")
            try:
                yield
            finally:
                logger.info(f"{settings.server_name} shutting down gracefully...")
                await coordinator.drain()
                tg.cancel_scope.cancel()

    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "status": "healthy",
                "server": settings.server_name,
                "activeSessions": len(registry),
                "transports": ["sse", "streamable-http"],
                "uptime": time.monotonic() - started_at,
            }
        )

    async def info(request: Request) -> Response:
        instructions = settings.instructions or (
            f"GET {settings.sse_path} to establish an SSE stream, then POST to "
            f"{settings.message_path}?session_id=<id>; or POST {settings.streamable_http_path} "
            "without Mcp-Session-Id to initialize a session"
        )
        return JSONResponse(
            {
                "name": settings.server_name,
                "version": settings.server_version,
                "transports": ["sse", "streamable-http"],
                "endpoints": {
                    "sse": settings.sse_path,
                    "messages": settings.message_path,
                    "mcp": settings.streamable_http_path,
                    "health": "/health",
                },
                "instructions": instructions,
                "capabilities": {"tools": [tool.name for tool in provider.list_tools()]},
            }
        )

    routes = [
        Route(settings.sse_path, endpoint=SseEndpoint(dispatcher, settings), methods=["GET"]),
        Route(settings.message_path, endpoint=MessageEndpoint(dispatcher, settings), methods=["POST"]),
        Route(
            settings.streamable_http_path,
            endpoint=StreamableHTTPEndpoint(dispatcher, settings),
            methods=["GET", "POST", "DELETE"],
        ),
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/", endpoint=info, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=[settings.cors_origin],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["Mcp-Session-Id"],
        )
    ]

    app = Starlette(debug=settings.debug, routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.broadcaster = broadcaster
    app.state.coordinator = coordinator
    return app
