from weather_mcp.utilities.logging import get_logger


def test_get_logger_nests_under_package():
    assert get_logger("weather").name == "weather_mcp.weather"
    assert get_logger("weather_mcp.server.sse").name == "weather_mcp.server.sse"
    assert get_logger("weather_mcp").name == "weather_mcp"
