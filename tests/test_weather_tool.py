"""Tests for GetWeatherInformationTool."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from toolchat.tools.base import ToolContext
from toolchat.tools.weather_tool import GetWeatherInformationTool

CTX = ToolContext(conversation_id="conv-1")


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.get = AsyncMock(return_value=response, side_effect=error)
    return mock_client


PARIS = {
    "current_condition": [
        {"weatherDesc": [{"value": "Partly cloudy"}], "temp_F": "61", "humidity": "72"},
    ]
}


@pytest.mark.asyncio
async def test_run_formats_current_conditions():
    mock_client = _mock_client(_mock_response(PARIS))

    with patch("toolchat.tools.weather_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetWeatherInformationTool().run(CTX, city="Paris")

    assert result == "The weather in Paris is Partly cloudy, 61°F with 72% humidity."


@pytest.mark.asyncio
async def test_run_requests_json_format_for_quoted_city():
    mock_client = _mock_client(_mock_response(PARIS))

    with patch("toolchat.tools.weather_tool.httpx.AsyncClient", return_value=mock_client):
        await GetWeatherInformationTool("https://weather.test/").run(CTX, city="New York")

    call = mock_client.get.call_args
    assert call.args[0] == "https://weather.test/New%20York"
    assert call.kwargs["params"] == {"format": "j1"}


@pytest.mark.asyncio
async def test_run_handles_non_200():
    mock_client = _mock_client(_mock_response({}, status_code=503))

    with patch("toolchat.tools.weather_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetWeatherInformationTool().run(CTX, city="Paris")

    assert result == "Sorry, I couldn't fetch weather for Paris. Please try again."


@pytest.mark.asyncio
async def test_network_errors_propagate():
    mock_client = _mock_client(error=httpx.ConnectError("offline"))

    with patch("toolchat.tools.weather_tool.httpx.AsyncClient", return_value=mock_client):
        with pytest.raises(httpx.ConnectError):
            await GetWeatherInformationTool().run(CTX, city="Paris")
