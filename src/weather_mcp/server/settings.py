from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Weather MCP server settings.

    All settings can be configured via environment variables with the prefix WEATHER_MCP_.
    For example, WEATHER_MCP_PORT=9000 will set port=9000.
    """

    model_config = SettingsConfigDict(
        env_prefix="WEATHER_MCP_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    server_name: str = "weather-sse-server"
    server_version: str = "1.0.0"
    instructions: str | None = None

    # HTTP settings
    host: str = "localhost"
    port: int = 8123
    sse_path: str = "/sse"
    message_path: str = "/messages"
    streamable_http_path: str = "/mcp"
    cors_origin: str = "*"
    max_body_bytes: int = 4 * 1024 * 1024

    # Session settings
    shutdown_timeout: float = 5.0
    sse_ping_interval: int | None = 30
    max_pending_notifications: int = Field(default=100, ge=1)
    """Notifications queued per request-scoped session between calls."""
    tool_list_poll_interval: float | None = None
    """Seconds between tool list change checks; None disables the check."""

    # National Weather Service client settings
    nws_api_base: str = "https://api.weather.gov"
    nws_user_agent: str = "weather-app/1.0"
    nws_timeout: float = 30.0
