"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import AsyncIterator

from toolchat.agent_runtime import AgentRuntime
from toolchat.commands import RESUMING_COMMANDS, CommandDispatcher, parse_command
from toolchat.completion import CompletionDriver
from toolchat.config import Settings, load_settings, trigger_keywords
from toolchat.db import Database
from toolchat.llm.openrouter import OpenRouterProvider
from toolchat.models import (
    ExecutionMode,
    FinishChunk,
    Message,
    StreamChunk,
    TextChunk,
    ToolCallChunk,
    ToolCallStatus,
    ToolResultChunk,
    user_message,
)
from toolchat.schedule_bridge import SchedulerBridge
from toolchat.scheduler import TaskScheduler
from toolchat.tools.registry import ToolRegistry
from toolchat.tools.schedule_tools import CancelScheduledTaskTool, GetScheduledTasksTool, ScheduleTaskTool
from toolchat.tools.time_tool import GetLocalTimeTool
from toolchat.tools.weather_tool import GetWeatherInformationTool
from toolchat.triggers import KeywordTrigger

LOGGER = logging.getLogger(__name__)


def build_registry(settings: Settings, db: Database) -> ToolRegistry:
    """Register the process-wide tool table."""

    tools = ToolRegistry(db)
    tools.register(GetWeatherInformationTool(settings.weather_base_url))
    tools.register(GetLocalTimeTool(settings.time_base_url))
    schedule_mode = ExecutionMode.CONFIRM if settings.schedule_requires_confirmation else ExecutionMode.AUTOMATIC
    tools.register(ScheduleTaskTool(), mode=schedule_mode)
    tools.register(GetScheduledTasksTool())
    tools.register(CancelScheduledTaskTool())
    return tools


async def print_stream(chunks: AsyncIterator[StreamChunk]) -> None:
    """Forward streamed chunks to stdout as they arrive."""

    async for chunk in chunks:
        if isinstance(chunk, TextChunk):
            sys.stdout.write(chunk.text)
        elif isinstance(chunk, ToolCallChunk) and chunk.status is ToolCallStatus.AWAITING_CONFIRMATION:
            sys.stdout.write(
                f"\n[{chunk.tool_name} {chunk.args} needs confirmation: "
                f"@approve {chunk.call_id} or @deny {chunk.call_id}]"
            )
        elif isinstance(chunk, ToolResultChunk):
            sys.stdout.write(f"\n[{chunk.tool_name} -> {chunk.output}]\n")
        elif isinstance(chunk, FinishChunk) and chunk.reason not in ("stop", "awaiting-confirmation"):
            sys.stdout.write(f"\n[turn ended: {chunk.reason}]")
        sys.stdout.flush()
    sys.stdout.write("\n")
    sys.stdout.flush()


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    scheduler = TaskScheduler(db=db, poll_interval_seconds=settings.scheduler_poll_interval_seconds)
    bridge = SchedulerBridge(scheduler)
    runtime = AgentRuntime(
        db=db,
        tool_registry=build_registry(settings, db),
        driver=CompletionDriver(OpenRouterProvider(settings), max_steps=settings.max_steps),
        scheduler=bridge,
        tool_trigger=KeywordTrigger(trigger_keywords(settings)),
    )
    commands = CommandDispatcher(runtime=runtime, db=db, scheduler=bridge)
    conversation_id = settings.conversation_id

    async def handle_scheduled_turn(target_id: str, message: Message) -> None:
        sys.stdout.write(f"\n{message.text}\n")
        await print_stream(runtime.handle_turn(target_id, message))

    bridge.bind(handle_scheduled_turn)
    scheduler_task = asyncio.create_task(scheduler.run_forever(bridge.on_fire), name="task-scheduler")

    try:
        while True:
            text = (await asyncio.to_thread(input, "> ")).strip()
            if not text:
                continue
            reply = await commands.dispatch(conversation_id, text)
            if reply is not None:
                print(reply)
                parsed = parse_command(text)
                if parsed and parsed[0] in RESUMING_COMMANDS:
                    await print_stream(runtime.handle_turn(conversation_id))
                continue
            await print_stream(runtime.handle_turn(conversation_id, user_message(text)))
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        scheduler.stop()
        scheduler_task.cancel()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
