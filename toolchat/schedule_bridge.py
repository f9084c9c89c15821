"""Bridge between scheduling tools, the durable scheduler and the turn pipeline."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from croniter import croniter
from pydantic import BaseModel, ValidationError

from toolchat.errors import InvalidSchedule
from toolchat.models import Message, Role, ScheduledTask, TextPart, TriggerSpec
from toolchat.scheduler import TaskScheduler

LOGGER = logging.getLogger(__name__)

SCHEDULED_PROMPT_PREFIX = "Running scheduled task: "

TurnHandler = Callable[[str, Message], Awaitable[None]]


class ScheduleWhen(BaseModel):
    """The ``when`` payload a model sends to the scheduleTask tool."""

    type: Literal["scheduled", "delayed", "cron", "no-schedule"]
    date: datetime | None = None
    delayInSeconds: int | None = None
    cron: str | None = None


def parse_trigger(when: dict[str, Any]) -> TriggerSpec:
    """Convert a tool ``when`` object into a TriggerSpec.

    Raises:
        InvalidSchedule: if the payload is malformed or asks for no schedule.
    """
    try:
        parsed = ScheduleWhen.model_validate(when)
    except ValidationError as exc:
        raise InvalidSchedule(f"Not a valid schedule input: {exc}") from exc

    if parsed.type == "scheduled":
        if parsed.date is None:
            raise InvalidSchedule("A scheduled trigger needs a date")
        run_at = parsed.date if parsed.date.tzinfo else parsed.date.replace(tzinfo=timezone.utc)
        return TriggerSpec(type="scheduled", value=run_at)
    if parsed.type == "delayed":
        if parsed.delayInSeconds is None or parsed.delayInSeconds <= 0:
            raise InvalidSchedule("A delayed trigger needs a positive delayInSeconds")
        return TriggerSpec(type="delayed", value=parsed.delayInSeconds)
    if parsed.type == "cron":
        if not parsed.cron or not croniter.is_valid(parsed.cron):
            raise InvalidSchedule(f"Invalid cron expression: {parsed.cron!r}")
        return TriggerSpec(type="cron", value=parsed.cron)
    raise InvalidSchedule("Not a valid schedule input")


def scheduled_prompt(description: str) -> str:
    if description.startswith(SCHEDULED_PROMPT_PREFIX):
        return description
    return f"{SCHEDULED_PROMPT_PREFIX}{description}"


class SchedulerBridge:
    """Schedule/list/cancel operations plus the callback run when a task fires."""

    def __init__(self, scheduler: TaskScheduler, turn_handler: TurnHandler | None = None) -> None:
        self._scheduler = scheduler
        self._turn_handler = turn_handler

    def bind(self, turn_handler: TurnHandler) -> None:
        """Set the pipeline entry point used when a task fires."""

        self._turn_handler = turn_handler

    def schedule(self, conversation_id: str, trigger: TriggerSpec, description: str) -> str:
        if not description.strip():
            raise InvalidSchedule("A scheduled task needs a description")
        if isinstance(trigger.value, datetime) and trigger.value <= datetime.now(timezone.utc):
            raise InvalidSchedule(f"Scheduled time {trigger.describe()} is in the past")
        try:
            task = self._scheduler.schedule(conversation_id, description, trigger)
        except ValueError as exc:
            raise InvalidSchedule(str(exc)) from exc
        return task.id

    def list(self, conversation_id: str | None = None) -> list[ScheduledTask]:
        return self._scheduler.list_tasks(conversation_id)

    def cancel(self, task_id: str) -> None:
        if not self._scheduler.cancel(task_id):
            raise InvalidSchedule(f"No scheduled task with id {task_id}")

    async def on_fire(self, task: ScheduledTask) -> Message:
        """Inject the task's description as a user turn and run the pipeline."""

        message = Message(
            role=Role.USER,
            parts=[TextPart(scheduled_prompt(task.description))],
            metadata={"createdAt": datetime.now(timezone.utc).isoformat(), "scheduledTaskId": task.id},
        )
        if self._turn_handler is None:
            raise RuntimeError("Scheduler bridge has no turn handler bound")
        LOGGER.info("Firing scheduled task %s for conversation %s", task.id, task.conversation_id)
        await self._turn_handler(task.conversation_id, message)
        return message
