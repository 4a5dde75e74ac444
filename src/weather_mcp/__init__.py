"""An MCP server exposing US National Weather Service data as tools.

Clients connect either with a long-lived SSE stream (``GET /sse``) or with
request-scoped calls (``POST /mcp``). Both share one session registry, one
protocol dispatcher and one shutdown path.
"""

from .server.app import create_app
from .server.settings import Settings
from .shared.exceptions import InvalidArgumentsError, InvocationError, McpError
from .weather import WeatherProvider

__all__ = [
    "create_app",
    "Settings",
    "McpError",
    "InvocationError",
    "InvalidArgumentsError",
    "WeatherProvider",
]
