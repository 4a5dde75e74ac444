from http import HTTPStatus

from weather_mcp.types import ErrorData


class McpError(Exception):
    """Exception carrying an MCP protocol error.

    Raised by request handlers (and capability providers) to produce an error
    response instead of a successful result. It wraps the ErrorData that is
    sent back to the peer.

    Attributes:
        error: The ErrorData object containing the error code, message, and
               optional additional data
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class StructuralError(McpError):
    """A call that cannot be routed to a session at all.

    Malformed bodies, missing or unknown session ids and invalid bootstrap
    requests reject the whole HTTP call. The HTTP layer renders these with
    ``status_code`` and a JSON-RPC error whose id is null.
    """

    def __init__(self, error: ErrorData, status_code: int = HTTPStatus.BAD_REQUEST):
        super().__init__(error)
        self.status_code = int(status_code)


class TransportClosedError(Exception):
    """Raised when writing to a transport that is closing, closed, or broken."""

    def __init__(self, session_id: str | None = None, message: str = "Transport is closed"):
        super().__init__(message if session_id is None else f"{message} (session {session_id})")
        self.session_id = session_id


class InvocationError(Exception):
    """Raised by a capability provider when a tool call fails."""


class InvalidArgumentsError(InvocationError):
    """Raised by a capability provider when tool arguments fail validation."""
