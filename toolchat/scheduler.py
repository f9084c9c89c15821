"""Durable async scheduler for delayed, timed and recurring tasks."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from croniter import croniter

from toolchat.db import Database
from toolchat.models import ScheduledTask, TriggerSpec, generate_id

LOGGER = logging.getLogger(__name__)

TaskHandler = Callable[[ScheduledTask], Awaitable[None]]


def next_run_time(trigger: TriggerSpec, now: datetime) -> datetime:
    """Compute when ``trigger`` next fires after ``now``."""

    if trigger.type == "scheduled" and isinstance(trigger.value, datetime):
        return trigger.value
    if trigger.type == "delayed":
        return now + timedelta(seconds=int(trigger.value))
    if trigger.type == "cron":
        return croniter(str(trigger.value), now).get_next(datetime)
    raise ValueError(f"Unsupported trigger type: {trigger.type}")


class TaskScheduler:
    """Persists tasks and polls for due ones, dispatching them via callback."""

    def __init__(self, db: Database, poll_interval_seconds: float = 2.0) -> None:
        self._db = db
        self._poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()

    def schedule(self, conversation_id: str, description: str, trigger: TriggerSpec) -> ScheduledTask:
        """Persist a task to run in the future."""

        run_at = next_run_time(trigger, datetime.now(timezone.utc))
        task = ScheduledTask(
            id=generate_id(),
            conversation_id=conversation_id,
            description=description,
            trigger=trigger,
            next_run_at=run_at,
            status="pending",
        )
        self._db.create_scheduled_task(
            task_id=task.id,
            conversation_id=conversation_id,
            description=description,
            trigger_type=trigger.type,
            trigger_value=trigger.describe(),
            next_run_at=run_at,
        )
        LOGGER.info("Scheduled task %s (%s) for %s", task.id, trigger.type, run_at.isoformat())
        return task

    def list_tasks(self, conversation_id: str | None = None) -> list[ScheduledTask]:
        return [_task_from_row(row) for row in self._db.list_scheduled_tasks(conversation_id)]

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Returns False if it is unknown or already finished."""

        row = self._db.get_scheduled_task(task_id)
        if row is None or row["status"] not in ("pending", "running"):
            return False
        self._db.mark_task_status(task_id, "cancelled")
        LOGGER.info("Cancelled task %s", task_id)
        return True

    async def run_pending(self, handler: TaskHandler, now: datetime | None = None) -> int:
        """Dispatch every task due at ``now`` concurrently; returns how many fired."""

        now = now or datetime.now(timezone.utc)
        due_tasks = [_task_from_row(row) for row in self._db.get_due_tasks(now)]
        if not due_tasks:
            return 0
        # Claim every due task before the first await so a later poll skips them.
        for task in due_tasks:
            self._db.mark_task_status(task.id, "running")
        LOGGER.info("Firing %d due task(s)", len(due_tasks))
        await asyncio.gather(*(self._fire(task, handler, now) for task in due_tasks))
        return len(due_tasks)

    async def run_forever(self, handler: TaskHandler) -> None:
        """Run scheduler loop until stop() is called.

        Each poll runs in its own task, so a handler that never returns only
        holds up its own task.
        """
        in_flight: set[asyncio.Task[int]] = set()
        while not self._stop_event.is_set():
            batch = asyncio.create_task(self.run_pending(handler))
            in_flight.add(batch)
            batch.add_done_callback(in_flight.discard)
            await asyncio.sleep(self._poll_interval_seconds)

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()

    async def _fire(self, task: ScheduledTask, handler: TaskHandler, now: datetime) -> None:
        try:
            await handler(task)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Scheduled task %s failed", task.id)
            self._db.mark_task_status(task.id, "failed")
            return
        if task.trigger.type == "cron" and self._is_active(task.id):
            self._db.reschedule_task(task.id, next_run_time(task.trigger, now))
        elif self._is_active(task.id):
            self._db.mark_task_status(task.id, "completed")

    def _is_active(self, task_id: str) -> bool:
        row = self._db.get_scheduled_task(task_id)
        return row is not None and row["status"] == "running"


def _task_from_row(row: dict[str, Any]) -> ScheduledTask:
    trigger_type = row["trigger_type"]
    raw_value = row["trigger_value"]
    value: datetime | int | str
    if trigger_type == "scheduled":
        value = datetime.fromisoformat(raw_value)
    elif trigger_type == "delayed":
        value = int(raw_value)
    else:
        value = raw_value
    return ScheduledTask(
        id=row["id"],
        conversation_id=row["conversation_id"],
        description=row["description"],
        trigger=TriggerSpec(type=trigger_type, value=value),
        next_run_at=datetime.fromisoformat(row["next_run_at"]),
        status=row["status"],
    )
