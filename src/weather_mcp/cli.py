"""Command-line entry point: serve the weather tools over HTTP."""

import click
import uvicorn

from weather_mcp.server.app import create_app
from weather_mcp.server.settings import Settings
from weather_mcp.utilities.logging import configure_logging, get_logger
from weather_mcp.weather import WeatherProvider

logger = get_logger(__name__)


@click.command()
@click.option("--host", default=None, help="Host to bind to (default: WEATHER_MCP_HOST or localhost)")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP (default: WEATHER_MCP_PORT or 8123)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level",
)
def main(host: str | None, port: int | None, log_level: str | None) -> int:
    overrides: dict[str, object] = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    settings = Settings(**overrides)  # type: ignore[arg-type]

    configure_logging(settings.log_level)

    provider = WeatherProvider(
        api_base=settings.nws_api_base,
        user_agent=settings.nws_user_agent,
        timeout=settings.nws_timeout,
    )
    app = create_app(provider, settings)

    logger.info(f"SSE endpoint: GET http://{settings.host}:{settings.port}{settings.sse_path}")
    logger.info(f"Messages: POST http://{settings.host}:{settings.port}{settings.message_path}?session_id=<id>")
    logger.info(f"Streamable HTTP endpoint: http://{settings.host}:{settings.port}{settings.streamable_http_path}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_timeout) or 1,
    )
    return 0
