"""Tools that create, list and cancel scheduled tasks."""

from __future__ import annotations

import logging
from typing import Any

from toolchat.errors import InvalidSchedule
from toolchat.models import ExecutionMode
from toolchat.schedule_bridge import SchedulerBridge, parse_trigger
from toolchat.tools.base import Tool, ToolContext

LOGGER = logging.getLogger(__name__)


def _bridge(context: ToolContext) -> SchedulerBridge:
    if context.scheduler is None:
        raise RuntimeError("Scheduling is not available in this context")
    return context.scheduler


class ScheduleTaskTool(Tool):
    """Schedule a task to run later, after a delay, or on a cron schedule."""

    name = "scheduleTask"
    description = "A tool to schedule a task to be executed at a later time"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "description": {"type": "string", "description": "What should happen when the task runs."},
            "when": {
                "type": "object",
                "description": "When to run the task.",
                "properties": {
                    "type": {"type": "string", "enum": ["scheduled", "delayed", "cron", "no-schedule"]},
                    "date": {"type": "string", "description": "ISO-8601 date/time for scheduled tasks."},
                    "delayInSeconds": {"type": "integer", "description": "Delay for delayed tasks."},
                    "cron": {"type": "string", "description": "Cron expression for recurring tasks."},
                },
                "required": ["type"],
            },
        },
        "required": ["description", "when"],
        "additionalProperties": False,
    }

    def __init__(self, execution_mode: ExecutionMode = ExecutionMode.AUTOMATIC) -> None:
        self.execution_mode = execution_mode

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        description = str(kwargs["description"])
        try:
            trigger = parse_trigger(kwargs["when"])
            _bridge(context).schedule(context.conversation_id, trigger, description)
        except InvalidSchedule as exc:
            LOGGER.warning("Rejected schedule request: %s", exc)
            return f"Error scheduling task: {exc}"
        return f'Task scheduled for type "{trigger.type}" : {trigger.describe()}'


class GetScheduledTasksTool(Tool):
    """List tasks scheduled for the current conversation."""

    name = "getScheduledTasks"
    description = "List all tasks that have been scheduled"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str | list[dict[str, Any]]:
        tasks = _bridge(context).list(context.conversation_id)
        if not tasks:
            return "No scheduled tasks found."
        return [task.to_dict() for task in tasks]


class CancelScheduledTaskTool(Tool):
    """Cancel a scheduled task by id."""

    name = "cancelScheduledTask"
    description = "Cancel a scheduled task using its ID"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"taskId": {"type": "string", "description": "The ID of the task to cancel"}},
        "required": ["taskId"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        task_id = str(kwargs["taskId"])
        try:
            _bridge(context).cancel(task_id)
        except InvalidSchedule as exc:
            return f"Error canceling task {task_id}: {exc}"
        return f"Task {task_id} has been successfully canceled."
