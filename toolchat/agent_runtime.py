"""Core agent runtime."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from toolchat.completion import CompletionDriver
from toolchat.db import Database
from toolchat.models import FinishChunk, Message, Role, StreamChunk, ToolCallChunk
from toolchat.orchestrator import OrchestrationResult, ToolCallOrchestrator, has_open_calls
from toolchat.sanitizer import sanitize
from toolchat.schedule_bridge import SchedulerBridge
from toolchat.sessions import SessionManager
from toolchat.tools.base import ToolContext
from toolchat.tools.registry import ToolDefinition, ToolRegistry
from toolchat.triggers import KeywordTrigger, ToolTrigger

LOGGER = logging.getLogger(__name__)


class AgentRuntime:
    """Conversation-isolated runtime composing sanitizer, orchestrator and completion driver."""

    def __init__(
        self,
        db: Database,
        tool_registry: ToolRegistry,
        driver: CompletionDriver,
        scheduler: SchedulerBridge | None = None,
        tool_trigger: ToolTrigger | None = None,
        sessions: SessionManager | None = None,
    ) -> None:
        self._db = db
        self._tool_registry = tool_registry
        self._driver = driver
        self._scheduler = scheduler
        self._tool_trigger = tool_trigger or KeywordTrigger()
        self._sessions = sessions or SessionManager()
        self._orchestrator = ToolCallOrchestrator(tool_registry)

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    def confirm(self, conversation_id: str, call_id: str, approved: bool) -> None:
        """Record a confirmation signal; it is applied on the next turn."""

        self._db.record_confirmation(conversation_id, call_id, approved)
        LOGGER.info("Confirmation for %s in %s: approved=%s", call_id, conversation_id, approved)

    async def handle_turn(self, conversation_id: str, message: Message | None = None) -> AsyncIterator[StreamChunk]:
        """Run one turn and stream its chunks.

        ``message`` is the inbound user message, or None to resume after a
        confirmation signal. A resume with nothing to resolve yields nothing.
        """
        async with self._sessions.turn(conversation_id) as abort:
            async for chunk in self._turn(conversation_id, message, abort):
                yield chunk

    async def handle_message(self, conversation_id: str, message: Message) -> Message | None:
        """Run a turn to completion and return the final assistant message."""

        final: Message | None = None
        async for chunk in self.handle_turn(conversation_id, message):
            if isinstance(chunk, FinishChunk):
                final = chunk.message
        return final

    async def _turn(
        self, conversation_id: str, message: Message | None, abort: asyncio.Event
    ) -> AsyncIterator[StreamChunk]:
        self._db.upsert_conversation(conversation_id)
        if message is not None:
            self._db.append_message(conversation_id, message)

        stored = self._db.get_messages(conversation_id)
        history = sanitize(stored)
        context = ToolContext(conversation_id=conversation_id, scheduler=self._scheduler)
        continuation: Message | None = None

        # Only the stored last message may be rewritten in place.
        last = history[-1] if history and history[-1].id == stored[-1].id else None
        if last is not None and last.role is Role.ASSISTANT and has_open_calls(last):
            confirmations = self._db.get_confirmations(conversation_id)
            result = await self._orchestrator.process(last, confirmations, context)
            if result.changed:
                self._db.replace_last_message(conversation_id, result.message)
            if result.awaiting:
                LOGGER.info("Turn for %s waiting on confirmation of %s", conversation_id, result.awaiting)
                for call in result.message.tool_calls():
                    if call.call_id in result.awaiting:
                        yield ToolCallChunk(call.call_id, call.tool_name, call.args, call.status)
                yield FinishChunk(message=result.message, reason="awaiting-confirmation")
                return
            if result.changed:
                continuation = result.message
                history = history[:-1]

        if message is None and continuation is None:
            LOGGER.info("Nothing to resume for conversation %s", conversation_id)
            return

        definitions = self._active_tools(history if continuation is None else [*history, continuation])
        system_prompt = _build_system_prompt(definitions)

        async def orchestrate(current: Message) -> OrchestrationResult:
            return await self._orchestrator.process(current, self._db.get_confirmations(conversation_id), context)

        final: FinishChunk | None = None
        async for chunk in self._driver.run(
            history,
            system_prompt,
            self._tool_registry.list_tool_specs(definitions),
            orchestrate,
            continuation=continuation,
            abort=abort,
        ):
            if isinstance(chunk, FinishChunk):
                final = chunk
            yield chunk

        if final is None or final.message is None:
            return
        if continuation is not None:
            self._db.replace_last_message(conversation_id, final.message)
        elif final.message.parts:
            self._db.append_message(conversation_id, final.message)
        LOGGER.info("Turn for %s finished: reason=%s", conversation_id, final.reason)

    def _active_tools(self, history: list[Message]) -> dict[str, ToolDefinition]:
        subset = self._tool_trigger(history)
        return self._tool_registry.resolve(subset)


def _build_system_prompt(definitions: dict[str, ToolDefinition]) -> str:
    prompt = (
        "You are a helpful AI assistant. Answer user questions using your knowledge about topics, "
        "concepts, companies, animals, technology, and general information."
    )
    if definitions:
        tool_lines = "\n".join(f"- {d.name}: {d.description}" for d in definitions.values())
        prompt += (
            f"\n\nAvailable tools:\n{tool_lines}\n\n"
            "Use tools only when explicitly needed. Answer all other questions directly from your knowledge."
        )
    else:
        prompt += "\n\nAnswer questions directly from your knowledge."
    return f"{prompt}\n\n{_schedule_prompt(datetime.now(timezone.utc))}"


def _schedule_prompt(now: datetime) -> str:
    return (
        f"The current date and time is {now.isoformat()}. "
        "When scheduling a task, pass `when` with type \"scheduled\" and an ISO-8601 `date`, "
        "type \"delayed\" with `delayInSeconds`, or type \"cron\" with a cron expression. "
        "Use type \"no-schedule\" if the request has no usable time."
    )
