"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Iterable

import httpx

from toolchat.config import Settings
from toolchat.errors import CompletionStreamError
from toolchat.llm.base import LLMProvider
from toolchat.models import LLMEvent, LLMToolCall, StepFinish, TextDelta, generate_id

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible streaming chat endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMEvent]:
        payload: dict[str, Any] = {
            "model": self._settings.openrouter_model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(base_url=self._settings.openrouter_base_url, timeout=timeout) as client:
                for attempt in range(_MAX_RETRIES + 1):
                    async with client.stream(
                        "POST",
                        "/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    ) as response:
                        # Rate limits arrive before the first byte, so a retry is safe here.
                        if response.status_code == 429 and attempt < _MAX_RETRIES:
                            wait = _RETRY_BACKOFF_SECONDS[attempt]
                            _LOGGER.warning(
                                "OpenRouter rate limited (429), retrying in %ds (attempt %d/%d)",
                                wait,
                                attempt + 1,
                                _MAX_RETRIES,
                            )
                            await asyncio.sleep(wait)
                            continue
                        if response.status_code != 200:
                            body = await response.aread()
                            raise CompletionStreamError(
                                f"OpenRouter returned HTTP {response.status_code}: {body[:200]!r}"
                            )
                        async for event in parse_sse_events(_data_lines(response)):
                            yield event
                        return
        except httpx.HTTPError as exc:
            raise CompletionStreamError(f"OpenRouter request failed: {exc}") from exc


async def _data_lines(response: httpx.Response) -> AsyncIterator[str]:
    async for line in response.aiter_lines():
        if line.startswith("data:"):
            yield line[len("data:"):].strip()


async def parse_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[LLMEvent]:
    """Turn chat-completion stream payloads into provider events.

    Text deltas are emitted as soon as they arrive. Tool call fragments are
    accumulated by index and emitted once the stream ends, followed by a
    single StepFinish.
    """
    pending: dict[int, dict[str, Any]] = {}
    finish_reason: str | None = None

    async for raw in lines:
        if raw == "[DONE]":
            break
        try:
            chunk = json.loads(raw)
        except json.JSONDecodeError:
            _LOGGER.warning("Skipping malformed stream payload: %r", raw[:200])
            continue
        if "error" in chunk:
            raise CompletionStreamError(f"OpenRouter stream error: {chunk['error']}")
        for choice in chunk.get("choices", []):
            delta = choice.get("delta") or {}
            if content := delta.get("content"):
                yield TextDelta(content)
            _merge_tool_call_deltas(pending, delta.get("tool_calls") or [])
            if choice.get("finish_reason"):
                finish_reason = choice["finish_reason"]

    _LOGGER.info("LLM stream finished: finish_reason=%r tool_calls=%d", finish_reason, len(pending))
    for index in sorted(pending):
        entry = pending[index]
        yield LLMToolCall(
            name=entry["name"],
            arguments=_safe_json_loads(entry["arguments"]),
            call_id=entry["id"] or f"call_{generate_id()}",
        )
    yield StepFinish(finish_reason)


def _merge_tool_call_deltas(pending: dict[int, dict[str, Any]], deltas: Iterable[dict[str, Any]]) -> None:
    for delta in deltas:
        entry = pending.setdefault(int(delta.get("index", 0)), {"id": None, "name": "", "arguments": ""})
        if delta.get("id"):
            entry["id"] = delta["id"]
        function_data = delta.get("function") or {}
        if function_data.get("name"):
            entry["name"] += function_data["name"]
        if function_data.get("arguments"):
            entry["arguments"] += function_data["arguments"]


def _safe_json_loads(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
