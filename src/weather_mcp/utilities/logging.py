"""Logging utilities for the weather MCP server."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the weather_mcp namespace.

    Args:
        name: the name of the logger, which will be prefixed with 'weather_mcp.'

    Returns:
        a configured logger instance
    """
    if name == "weather_mcp" or name.startswith("weather_mcp."):
        return logging.getLogger(name)
    return logging.getLogger(f"weather_mcp.{name}")


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure process-wide logging, rendered by rich on stderr.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )
