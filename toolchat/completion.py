"""Completion driver: multi-step model streaming with tool orchestration."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable

from toolchat.errors import CompletionStreamError
from toolchat.llm.base import LLMProvider
from toolchat.llm.messages import to_model_messages
from toolchat.models import (
    FinishChunk,
    LLMEvent,
    LLMToolCall,
    Message,
    Role,
    StreamChunk,
    TextChunk,
    TextDelta,
    TextPart,
    ToolCallChunk,
    ToolCallPart,
    ToolCallStatus,
    ToolResultChunk,
    ToolResultPart,
    generate_id,
)
from toolchat.orchestrator import OrchestrationResult, has_open_calls

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10
ABORTED_MARKER = "Error: Tool call aborted before execution"

_END = object()
_ABORTED = object()

Orchestrate = Callable[[Message], Awaitable[OrchestrationResult]]


class CompletionDriver:
    """Streams model output step by step until the model stops or the ceiling is hit."""

    def __init__(self, llm: LLMProvider, max_steps: int = DEFAULT_MAX_STEPS) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._llm = llm
        self._max_steps = max_steps

    async def run(
        self,
        history: list[Message],
        system_prompt: str,
        tools: list[dict[str, Any]],
        orchestrate: Orchestrate,
        continuation: Message | None = None,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield chunks for one turn, ending with exactly one FinishChunk.

        ``history`` holds the messages before the assistant reply. When
        ``continuation`` is given, new parts are appended to that assistant
        message instead of a fresh one.
        """
        message = continuation or Message(role=Role.ASSISTANT)
        reason = "max-steps"

        for step in range(self._max_steps):
            if abort is not None and abort.is_set():
                reason = "aborted"
                break

            model_messages = to_model_messages([*history, message], system_prompt)
            LOGGER.info("Completion step %d/%d, messages=%d", step + 1, self._max_steps, len(model_messages))
            step_text: TextPart | None = None
            new_calls: list[ToolCallPart] = []
            aborted = False
            try:
                async with aclosing(self._llm.stream(model_messages, tools or None)) as events:
                    while True:
                        event = await _next_event(events, abort)
                        if event is _END:
                            break
                        if event is _ABORTED or (abort is not None and abort.is_set()):
                            aborted = True
                            break
                        if isinstance(event, TextDelta):
                            if step_text is None:
                                step_text = TextPart("")
                                message.parts.append(step_text)
                            step_text.text += event.text
                            yield TextChunk(event.text)
                        elif isinstance(event, LLMToolCall):
                            call = ToolCallPart(
                                call_id=event.call_id or f"call_{generate_id()}",
                                tool_name=event.name,
                                args=event.arguments,
                            )
                            message.parts.append(call)
                            new_calls.append(call)
                            yield ToolCallChunk(call.call_id, call.tool_name, call.args, call.status)
            except CompletionStreamError:
                LOGGER.exception("Completion stream failed on step %d", step + 1)
                reason = "error"
                break

            if aborted:
                for chunk in _abandon(new_calls, message):
                    yield chunk
                reason = "aborted"
                break
            if not new_calls and not has_open_calls(message):
                reason = "stop"
                break

            result = await orchestrate(message)
            message = result.message
            for chunk in _result_chunks(message, result):
                yield chunk
            if result.awaiting:
                reason = "awaiting-confirmation"
                break
            if not result.resolved:
                reason = "stop"
                break
        else:
            LOGGER.warning("Completion hit the step ceiling (%d) for message %s", self._max_steps, message.id)

        yield FinishChunk(message=message, reason=reason)


async def _pull(events: AsyncIterator[LLMEvent]) -> Any:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _END


async def _next_event(events: AsyncIterator[LLMEvent], abort: asyncio.Event | None) -> Any:
    """Wait for the next provider event, giving up as soon as ``abort`` is set."""

    if abort is None:
        return await _pull(events)
    pull = asyncio.ensure_future(_pull(events))
    stop = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({pull, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        pull.cancel()
        raise
    finally:
        stop.cancel()
    if pull in done:
        return pull.result()
    pull.cancel()
    # The generator must settle before aclosing() can close it.
    await asyncio.gather(pull, return_exceptions=True)
    return _ABORTED


def _abandon(calls: list[ToolCallPart], message: Message) -> list[StreamChunk]:
    """Fail calls the model requested in an aborted step so no later turn runs them."""

    chunks: list[StreamChunk] = []
    for call in calls:
        if call.status is not ToolCallStatus.REQUESTED:
            continue
        call.advance(ToolCallStatus.FAILED)
        message.parts.append(ToolResultPart(call.call_id, ABORTED_MARKER, is_error=True))
        chunks.append(ToolResultChunk(call.call_id, call.tool_name, ABORTED_MARKER, True))
    return chunks


def _result_chunks(message: Message, result: OrchestrationResult) -> list[StreamChunk]:
    calls = {call.call_id: call for call in message.tool_calls()}
    chunks: list[StreamChunk] = []
    for call_id in result.resolved:
        part = message.result_for(call_id)
        if part is not None:
            chunks.append(ToolResultChunk(call_id, calls[call_id].tool_name, part.output, part.is_error))
    for call_id in result.awaiting:
        call = calls[call_id]
        chunks.append(ToolCallChunk(call.call_id, call.tool_name, call.args, call.status))
    return chunks
