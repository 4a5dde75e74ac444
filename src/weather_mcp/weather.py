"""Weather tools backed by the US National Weather Service API."""

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from weather_mcp.shared.exceptions import InvalidArgumentsError, InvocationError
from weather_mcp.types import CallToolResult, TextContent, Tool

logger = logging.getLogger(__name__)

NWS_API_BASE = "https://api.weather.gov"
USER_AGENT = "weather-app/1.0"


class AlertsArguments(BaseModel):
    state: str = Field(min_length=2, max_length=2, description="Two-letter state code (e.g. CA, NY)")


class ForecastArguments(BaseModel):
    latitude: float = Field(ge=-90, le=90, description="Latitude of the location")
    longitude: float = Field(ge=-180, le=180, description="Longitude of the location")


def format_alert(feature: dict[str, Any]) -> str:
    props = feature.get("properties") or {}
    return "\n".join(
        [
            f"Event: {props.get('event') or 'Unknown'}",
            f"Area: {props.get('areaDesc') or 'Unknown'}",
            f"Severity: {props.get('severity') or 'Unknown'}",
            f"Status: {props.get('status') or 'Unknown'}",
            f"Headline: {props.get('headline') or 'No headline'}",
            "---",
        ]
    )


def format_period(period: dict[str, Any]) -> str:
    temperature = period.get("temperature")
    return "\n".join(
        [
            f"{period.get('name') or 'Unknown'}:",
            f"Temperature: {'Unknown' if temperature is None else temperature}°{period.get('temperatureUnit') or 'F'}",
            f"Wind: {period.get('windSpeed') or 'Unknown'} {period.get('windDirection') or ''}",
            f"{period.get('shortForecast') or 'No forecast available'}",
            "---",
        ]
    )


def _text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(text=text)])


class WeatherProvider:
    """
    Capability provider exposing ``get_alerts`` and ``get_forecast``.

    Args:
        api_base: Base URL of the NWS API
        user_agent: User-Agent the NWS API requires on every request
        timeout: Per-request timeout in seconds
        client: Optional pre-configured client, mainly for tests; when omitted
            a client is created for each request
    """

    def __init__(
        self,
        api_base: str = NWS_API_BASE,
        user_agent: str = USER_AGENT,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client
        self._tools = [
            Tool(
                name="get_alerts",
                description="Get weather alerts for a US state",
                input_schema=AlertsArguments.model_json_schema(),
            ),
            Tool(
                name="get_forecast",
                description="Get weather forecast for a specific location (US only)",
                input_schema=ForecastArguments.model_json_schema(),
            ),
        ]

    @property
    def headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/geo+json"}

    def list_tools(self) -> Sequence[Tool]:
        return list(self._tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        match name:
            case "get_alerts":
                return await self.get_alerts(self._parse(AlertsArguments, arguments))
            case "get_forecast":
                return await self.get_forecast(self._parse(ForecastArguments, arguments))
            case _:
                raise InvocationError(f"Unknown tool: {name}")

    @staticmethod
    def _parse(model: type[BaseModel], arguments: dict[str, Any]) -> Any:
        try:
            return model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidArgumentsError(f"Invalid arguments: {e}") from e

    async def get_alerts(self, args: AlertsArguments) -> CallToolResult:
        state_code = args.state.upper()
        data = await self._fetch(f"{self.api_base}/alerts", params={"area": state_code})
        if data is None:
            raise InvocationError("Failed to retrieve alerts data from weather service")

        features = data.get("features") or []
        if not features:
            return _text_result(f"No active weather alerts for {state_code}")

        alerts = "\n\n".join(format_alert(feature) for feature in features)
        return _text_result(f"Active weather alerts for {state_code}:\n\n{alerts}")

    async def get_forecast(self, args: ForecastArguments) -> CallToolResult:
        location = f"{args.latitude:.4f},{args.longitude:.4f}"
        points = await self._fetch(f"{self.api_base}/points/{location}")
        if points is None:
            raise InvalidArgumentsError(
                f"Location {args.latitude}, {args.longitude} is not supported by the weather service "
                "(only US locations are supported)"
            )

        forecast_url = (points.get("properties") or {}).get("forecast")
        if not forecast_url:
            raise InvocationError("Failed to get forecast URL from weather service")

        forecast = await self._fetch(forecast_url)
        if forecast is None:
            raise InvocationError("Failed to retrieve forecast data from weather service")

        periods = (forecast.get("properties") or {}).get("periods") or []
        if not periods:
            return _text_result("No forecast periods available for this location")

        formatted = "\n\n".join(format_period(period) for period in periods)
        return _text_result(f"Weather forecast for {args.latitude:.4f}, {args.longitude:.4f}:\n\n{formatted}")

    async def _fetch(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any] | None:
        """GET a JSON document from the NWS API; None on any failure."""
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=self.headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(headers=self.headers, timeout=self.timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Error making NWS request to {url}: {e!r}")
            return None
