"""Local time lookup tool."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from toolchat.tools.base import Tool, ToolContext

LOGGER = logging.getLogger(__name__)

WORLDTIME_URL = "https://worldtimeapi.org/api/timezone"

TIMEZONES = {
    "new york": "America/New_York",
    "london": "Europe/London",
    "tokyo": "Asia/Tokyo",
    "los angeles": "America/Los_Angeles",
    "chicago": "America/Chicago",
    "paris": "Europe/Paris",
    "sydney": "Australia/Sydney",
    "mumbai": "Asia/Kolkata",
    "beijing": "Asia/Shanghai",
    "moscow": "Europe/Moscow",
}


class GetLocalTimeTool(Tool):
    """Returns the wall-clock time for a known city, UTC otherwise."""

    name = "getLocalTime"
    description = "get the local time for a specified location"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"location": {"type": "string", "description": "City or place name."}},
        "required": ["location"],
        "additionalProperties": False,
    }

    def __init__(self, base_url: str = WORLDTIME_URL) -> None:
        self._base_url = base_url.rstrip("/")

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        location = str(kwargs["location"]).strip()
        tz_name = TIMEZONES.get(location.lower(), "UTC")

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"{self._base_url}/{tz_name}", timeout=10.0)
            if resp.status_code != 200:
                now = datetime.now(timezone.utc)
                return (
                    f"The current time in {location} is approximately {_clock(now)} "
                    "(timezone lookup failed, showing UTC)"
                )
            current = datetime.fromisoformat(resp.json()["datetime"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Time API error for %s: %s", location, exc)
            current = datetime.now(ZoneInfo(tz_name))
            return f"The current time in {location} is approximately {_clock(current)} (error: {exc})"

        return f"The current time in {location} is {_clock(current.astimezone(ZoneInfo(tz_name)))}"


def _clock(value: datetime) -> str:
    return value.strftime("%I:%M %p")
