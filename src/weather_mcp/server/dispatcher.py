"""
Protocol dispatch for inbound JSON-RPC calls.

``Dispatcher.handle`` takes the raw body of one HTTP call plus the session id
it carried (if any), resolves or bootstraps the session, runs every envelope
in the call and writes each reply through the session's transport.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from http import HTTPStatus
from typing import Any

from pydantic import ValidationError

from weather_mcp.server.provider import CapabilityProvider
from weather_mcp.server.session_registry import Session, SessionRegistry
from weather_mcp.server.streamable_http import StreamableHTTPServerTransport
from weather_mcp.server.transport import Transport
from weather_mcp.shared.exceptions import (
    InvalidArgumentsError,
    InvocationError,
    McpError,
    StructuralError,
    TransportClosedError,
)
from weather_mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolRequestParams,
    CallToolResult,
    ErrorData,
    Implementation,
    InboundMessage,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    OutboundMessage,
    ServerCapabilities,
    ToolsCapability,
    dump_result,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]


class MethodKind(Enum):
    INITIALIZE = auto()
    PING = auto()
    LIST_TOOLS = auto()
    CALL_TOOL = auto()
    INITIALIZED = auto()
    CANCELLED = auto()
    UNRECOGNIZED = auto()


_METHOD_KINDS: dict[str, MethodKind] = {
    "initialize": MethodKind.INITIALIZE,
    "ping": MethodKind.PING,
    "tools/list": MethodKind.LIST_TOOLS,
    "tools/call": MethodKind.CALL_TOOL,
    "notifications/initialized": MethodKind.INITIALIZED,
    "notifications/cancelled": MethodKind.CANCELLED,
}

_NOTIFICATION_KINDS = frozenset({MethodKind.INITIALIZED, MethodKind.CANCELLED})


def classify(method: str) -> MethodKind:
    return _METHOD_KINDS.get(method, MethodKind.UNRECOGNIZED)


@dataclass
class ParsedBody:
    envelopes: list[InboundMessage]
    is_batch: bool

    @property
    def request_ids(self) -> list[Any]:
        return [e.id for e in self.envelopes if isinstance(e, JSONRPCRequest)]


@dataclass
class DispatchOutcome:
    session: Session
    created: bool
    is_batch: bool
    replies: list[OutboundMessage] = field(default_factory=list)

    @property
    def session_id(self) -> str:
        return self.session.id


def _invalid_request(message: str, data: Any = None) -> StructuralError:
    return StructuralError(ErrorData(code=INVALID_REQUEST, message=message, data=data))


def parse_body(raw_body: bytes | str) -> ParsedBody:
    """Parse one envelope or a batch of them.

    Raises:
        StructuralError: if the body is not valid JSON or any entry is not a
            well-formed request or notification.
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise StructuralError(ErrorData(code=PARSE_ERROR, message=f"Parse error: {e}")) from e

    is_batch = isinstance(payload, list)
    items = payload if is_batch else [payload]
    if not items:
        raise _invalid_request("Invalid Request: empty batch")

    envelopes: list[InboundMessage] = []
    for item in items:
        if not isinstance(item, dict) or "method" not in item:
            raise _invalid_request("Invalid Request: expected a JSON-RPC request or notification")
        try:
            if "id" in item:
                envelopes.append(JSONRPCRequest.model_validate(item))
            else:
                envelopes.append(JSONRPCNotification.model_validate(item))
        except ValidationError as e:
            raise _invalid_request("Invalid Request", data=str(e)) from e

    ids = [e.id for e in envelopes if isinstance(e, JSONRPCRequest)]
    if len(ids) != len(set(ids)):
        raise _invalid_request("Invalid Request: duplicate request ids in batch")

    return ParsedBody(envelopes=envelopes, is_batch=is_batch)


class Dispatcher:
    """
    Routes JSON-RPC calls to sessions and capability handlers.

    Args:
        registry: The session registry new sessions are minted in
        provider: Supplies the tool list and executes tool calls
        server_info: Name and version reported in the initialize result
        instructions: Optional instructions reported in the initialize result
        transport_factory: Builds the transport for sessions bootstrapped by
            a POST without a session id
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: CapabilityProvider,
        server_info: Implementation,
        instructions: str | None = None,
        transport_factory: TransportFactory = StreamableHTTPServerTransport,
    ):
        self.registry = registry
        self.provider = provider
        self.server_info = server_info
        self.instructions = instructions
        self.transport_factory = transport_factory

    def open_session(self, transport_factory: TransportFactory | None = None) -> Session:
        """Mint a session and attach a fresh transport to it."""
        factory = transport_factory or self.transport_factory
        session_id, handle = self.registry.create()
        try:
            return handle.attach(factory(session_id))
        except Exception:
            self.registry.remove(session_id)
            raise

    async def handle(self, session_id: str | None, raw_body: bytes | str) -> DispatchOutcome:
        """Process one inbound HTTP call.

        Raises:
            StructuralError: if the call as a whole cannot be accepted
        """
        parsed = parse_body(raw_body)

        created = False
        if session_id is None:
            self._check_bootstrap(parsed)
            session = self.open_session()
            created = True
        else:
            found = self.registry.lookup(session_id)
            if found is None:
                logger.debug(f"Rejecting call for unknown session {session_id}")
                raise StructuralError(
                    ErrorData(code=INVALID_REQUEST, message="Session not found"),
                    status_code=HTTPStatus.NOT_FOUND,
                )
            session = found

        transport = session.transport
        assert transport is not None

        try:
            async with transport.open_call(parsed.request_ids) as call:
                for envelope in parsed.envelopes:
                    if not await self._process(session, envelope):
                        break
                replies = call.collect()
        except TransportClosedError as e:
            if created:
                self.registry.remove(session.id)
            raise StructuralError(
                ErrorData(code=INVALID_REQUEST, message="Session not found"),
                status_code=HTTPStatus.NOT_FOUND,
            ) from e

        return DispatchOutcome(session=session, created=created, is_batch=parsed.is_batch, replies=replies)

    def _check_bootstrap(self, parsed: ParsedBody) -> None:
        if parsed.is_batch:
            raise _invalid_request("Bad Request: initialization cannot be batched")
        envelope = parsed.envelopes[0]
        if not isinstance(envelope, JSONRPCRequest) or classify(envelope.method) is not MethodKind.INITIALIZE:
            raise _invalid_request("Bad Request: No valid session ID provided")
        try:
            InitializeRequestParams.model_validate(envelope.params or {})
        except ValidationError as e:
            raise StructuralError(
                ErrorData(code=INVALID_PARAMS, message="Invalid initialize params", data=str(e))
            ) from e

    async def _process(self, session: Session, envelope: InboundMessage) -> bool:
        """Run one envelope; returns False once the session's transport is gone."""
        kind = classify(envelope.method)
        if isinstance(envelope, JSONRPCNotification):
            self._handle_notification(session, envelope, kind)
            return True

        logger.debug(f"Processing request {envelope.method} ({kind.name}) for session {session.id}")
        reply: OutboundMessage
        try:
            result = await self._handle_request(session, envelope, kind)
        except McpError as err:
            reply = JSONRPCError(id=envelope.id, error=err.error)
        except Exception as err:
            logger.exception(f"Unhandled error processing {envelope.method} for session {session.id}")
            reply = JSONRPCError(id=envelope.id, error=ErrorData(code=INTERNAL_ERROR, message=str(err)))
        else:
            reply = JSONRPCResponse(id=envelope.id, result=result)

        transport = session.transport
        assert transport is not None
        try:
            await transport.send(reply)
        except TransportClosedError:
            logger.warning(f"Session {session.id} closed before the reply to request {envelope.id} was sent")
            return False
        return True

    def _handle_notification(self, session: Session, notification: JSONRPCNotification, kind: MethodKind) -> None:
        if kind in _NOTIFICATION_KINDS:
            logger.debug(f"Received {notification.method} from session {session.id}")
        else:
            logger.debug(f"Ignoring notification {notification.method} from session {session.id}")

    async def _handle_request(self, session: Session, request: JSONRPCRequest, kind: MethodKind) -> dict[str, Any]:
        match kind:
            case MethodKind.INITIALIZE:
                return self._initialize(session, request)
            case MethodKind.PING:
                return {}
            case MethodKind.LIST_TOOLS:
                return dump_result(ListToolsResult(tools=list(self.provider.list_tools())))
            case MethodKind.CALL_TOOL:
                return await self._call_tool(request)
            case MethodKind.INITIALIZED | MethodKind.CANCELLED | MethodKind.UNRECOGNIZED:
                raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"))

    def _initialize(self, session: Session, request: JSONRPCRequest) -> dict[str, Any]:
        if session.initialized:
            raise McpError(ErrorData(code=INVALID_REQUEST, message="Session already initialized"))
        try:
            params = InitializeRequestParams.model_validate(request.params or {})
        except ValidationError as e:
            raise McpError(ErrorData(code=INVALID_PARAMS, message="Invalid initialize params", data=str(e))) from e

        if params.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = params.protocol_version
        else:
            protocol_version = LATEST_PROTOCOL_VERSION

        session.initialized = True
        session.protocol_version = protocol_version
        session.client_info = params.client_info
        client = params.client_info.name if params.client_info else "unknown client"
        logger.info(f"Session {session.id} initialized by {client} (protocol {protocol_version})")

        return dump_result(
            InitializeResult(
                protocol_version=protocol_version,
                capabilities=ServerCapabilities(tools=ToolsCapability(list_changed=True)),
                server_info=self.server_info,
                instructions=self.instructions,
            )
        )

    async def _call_tool(self, request: JSONRPCRequest) -> dict[str, Any]:
        try:
            params = CallToolRequestParams.model_validate(request.params or {})
        except ValidationError as e:
            raise McpError(ErrorData(code=INVALID_PARAMS, message="Invalid tools/call params", data=str(e))) from e

        if params.name not in {tool.name for tool in self.provider.list_tools()}:
            raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=f"Unknown tool: {params.name}"))

        try:
            result = await self.provider.call_tool(params.name, params.arguments or {})
        except McpError:
            raise
        except InvalidArgumentsError as e:
            raise McpError(ErrorData(code=INVALID_PARAMS, message=str(e))) from e
        except InvocationError as e:
            logger.warning(f"Tool {params.name} failed: {e}")
            raise McpError(ErrorData(code=INTERNAL_ERROR, message=str(e))) from e

        if result is None:
            raise McpError(ErrorData(code=INTERNAL_ERROR, message=f"Tool {params.name} returned no result"))
        try:
            validated = CallToolResult.model_validate(result, from_attributes=True)
        except ValidationError as e:
            raise McpError(
                ErrorData(code=INTERNAL_ERROR, message=f"Tool {params.name} returned an invalid result", data=str(e))
            ) from e
        return dump_result(validated)
