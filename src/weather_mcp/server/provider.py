"""Contract between the protocol core and whatever supplies the tools."""

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from weather_mcp.types import CallToolResult, Tool


@runtime_checkable
class CapabilityProvider(Protocol):
    """Supplies the invocable tools and executes them.

    ``list_tools`` is static metadata and must be cheap; the dispatcher calls
    it for every ``tools/list`` and to reject unknown tool names.

    ``call_tool`` may raise ``InvalidArgumentsError`` for bad arguments,
    ``InvocationError`` for any other failure, or ``McpError`` to choose the
    protocol error itself.
    """

    def list_tools(self) -> Sequence[Tool]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult: ...
