"""JSON-RPC envelopes and the MCP payloads this server speaks."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION: Final[str] = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", LATEST_PROTOCOL_VERSION)

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: dict[str, Any]


class JSONRPCError(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


InboundMessage = JSONRPCRequest | JSONRPCNotification
OutboundMessage = JSONRPCResponse | JSONRPCError | JSONRPCNotification


def to_wire(message: BaseModel) -> dict[str, Any]:
    """Render a message as the JSON object that goes on the wire."""
    payload = message.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(message, JSONRPCError):
        # JSON-RPC requires the id member on errors, null when it is unknown
        payload.setdefault("id", None)
    return payload


class MCPModel(BaseModel):
    """Base class for MCP payload types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Implementation(MCPModel):
    """Name and version of an MCP implementation."""

    name: str
    version: str


class ToolsCapability(MCPModel):
    list_changed: Annotated[bool | None, Field(alias="listChanged")] = None


class ServerCapabilities(MCPModel):
    tools: ToolsCapability | None = None


class InitializeRequestParams(MCPModel):
    """Parameters for the initialize request.

    Only the protocol version is required; clients that omit their capabilities
    or identity are still accepted.
    """

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: Annotated[Implementation | None, Field(alias="clientInfo")] = None


class InitializeResult(MCPModel):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None


class Tool(MCPModel):
    """Definition of a tool the server provides."""

    name: str
    description: str | None = None
    input_schema: Annotated[dict[str, Any], Field(alias="inputSchema")]


class ListToolsResult(MCPModel):
    tools: list[Tool]


class CallToolRequestParams(MCPModel):
    name: str
    arguments: dict[str, Any] | None = None


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


class CallToolResult(MCPModel):
    """Server's response to a tools/call request."""

    content: list[TextContent]
    is_error: Annotated[bool, Field(alias="isError")] = False


def dump_result(result: MCPModel) -> dict[str, Any]:
    return result.model_dump(by_alias=True, mode="json", exclude_none=True)
