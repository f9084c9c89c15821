"""Weather lookup tool backed by wttr.in."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from toolchat.tools.base import Tool, ToolContext

WTTR_URL = "https://wttr.in"


class GetWeatherInformationTool(Tool):
    """Current conditions for a city."""

    name = "getWeatherInformation"
    description = "show the weather in a given city to the user"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"city": {"type": "string", "description": "The city to look up."}},
        "required": ["city"],
        "additionalProperties": False,
    }

    def __init__(self, base_url: str = WTTR_URL) -> None:
        self._base_url = base_url.rstrip("/")

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        city = str(kwargs["city"]).strip()

        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{self._base_url}/{quote(city)}",
                params={"format": "j1"},
                timeout=15.0,
            )
            if resp.status_code != 200:
                return f"Sorry, I couldn't fetch weather for {city}. Please try again."
            data = resp.json()

        current = data["current_condition"][0]
        condition = current["weatherDesc"][0]["value"]
        return (
            f"The weather in {city} is {condition}, {current['temp_F']}°F "
            f"with {current['humidity']}% humidity."
        )
