"""Tests for GetLocalTimeTool."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from toolchat.tools.base import ToolContext
from toolchat.tools.time_tool import GetLocalTimeTool

CTX = ToolContext(conversation_id="conv-1")


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.get = AsyncMock(return_value=response, side_effect=error)
    return mock_client


def _response(payload: dict, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


@pytest.mark.asyncio
async def test_known_city_uses_its_timezone():
    mock_client = _mock_client(_response({"datetime": "2026-03-01T14:05:00.000000+09:00"}))

    with patch("toolchat.tools.time_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetLocalTimeTool("https://time.test").run(CTX, location="Tokyo")

    assert mock_client.get.call_args.args[0] == "https://time.test/Asia/Tokyo"
    assert result == "The current time in Tokyo is 02:05 PM"


@pytest.mark.asyncio
async def test_unknown_city_falls_back_to_utc():
    mock_client = _mock_client(_response({"datetime": "2026-03-01T05:30:00+00:00"}))

    with patch("toolchat.tools.time_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetLocalTimeTool("https://time.test").run(CTX, location="Atlantis")

    assert mock_client.get.call_args.args[0] == "https://time.test/UTC"
    assert result == "The current time in Atlantis is 05:30 AM"


@pytest.mark.asyncio
async def test_non_200_reports_approximate_utc():
    mock_client = _mock_client(_response({}, status_code=500))

    with patch("toolchat.tools.time_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetLocalTimeTool().run(CTX, location="Paris")

    assert result.startswith("The current time in Paris is approximately")
    assert "timezone lookup failed" in result


@pytest.mark.asyncio
async def test_network_error_reports_local_estimate():
    mock_client = _mock_client(error=httpx.ConnectError("offline"))

    with patch("toolchat.tools.time_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetLocalTimeTool().run(CTX, location="London")

    assert "approximately" in result
    assert "offline" in result


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"datetime": "not a timestamp"}])
async def test_malformed_payload_reports_local_estimate(payload):
    mock_client = _mock_client(_response(payload))

    with patch("toolchat.tools.time_tool.httpx.AsyncClient", return_value=mock_client):
        result = await GetLocalTimeTool("https://time.test").run(CTX, location="Paris")

    assert result.startswith("The current time in Paris is approximately ")
    assert "(error: " in result
