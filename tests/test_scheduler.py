import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from toolchat.db import Database
from toolchat.models import TriggerSpec
from toolchat.scheduler import TaskScheduler, next_run_time


def _scheduler(tmp_path) -> tuple[Database, TaskScheduler]:
    db = Database(tmp_path / "toolchat.db")
    db.initialize()
    return db, TaskScheduler(db=db, poll_interval_seconds=0.01)


def test_next_run_time_for_each_trigger_type():
    now = datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)
    at = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)

    assert next_run_time(TriggerSpec("scheduled", at), now) == at
    assert next_run_time(TriggerSpec("delayed", 90), now) == now + timedelta(seconds=90)
    assert next_run_time(TriggerSpec("cron", "0 9 * * *"), now) == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_next_run_time_rejects_unknown_type():
    with pytest.raises(ValueError):
        next_run_time(TriggerSpec("weekly", "monday"), datetime.now(timezone.utc))


def test_schedule_persists_task(tmp_path):
    _, scheduler = _scheduler(tmp_path)

    task = scheduler.schedule("conv-1", "call mom", TriggerSpec("delayed", 60))

    listed = scheduler.list_tasks("conv-1")
    assert [t.id for t in listed] == [task.id]
    assert listed[0].description == "call mom"
    assert listed[0].trigger == TriggerSpec("delayed", 60)
    assert listed[0].status == "pending"


@pytest.mark.asyncio
async def test_due_one_shot_task_fires_once_and_completes(tmp_path):
    db, scheduler = _scheduler(tmp_path)
    task = scheduler.schedule("conv-1", "call mom", TriggerSpec("delayed", 60))
    handler = AsyncMock()

    later = datetime.now(timezone.utc) + timedelta(minutes=2)
    fired = await scheduler.run_pending(handler, now=later)
    fired_again = await scheduler.run_pending(handler, now=later)

    assert fired == 1
    assert fired_again == 0
    handler.assert_awaited_once()
    assert handler.await_args.args[0].description == "call mom"
    assert db.get_scheduled_task(task.id)["status"] == "completed"


@pytest.mark.asyncio
async def test_tasks_not_yet_due_do_not_fire(tmp_path):
    _, scheduler = _scheduler(tmp_path)
    scheduler.schedule("conv-1", "later", TriggerSpec("delayed", 3600))
    handler = AsyncMock()

    assert await scheduler.run_pending(handler) == 0
    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_cron_task_is_rearmed(tmp_path):
    db, scheduler = _scheduler(tmp_path)
    task = scheduler.schedule("conv-1", "standup", TriggerSpec("cron", "*/5 * * * *"))
    handler = AsyncMock()

    fire_at = task.next_run_at + timedelta(seconds=1)
    await scheduler.run_pending(handler, now=fire_at)

    row = db.get_scheduled_task(task.id)
    assert row["status"] == "pending"
    assert datetime.fromisoformat(row["next_run_at"]) > fire_at


@pytest.mark.asyncio
async def test_failing_handler_marks_task_failed(tmp_path):
    db, scheduler = _scheduler(tmp_path)
    task = scheduler.schedule("conv-1", "boom", TriggerSpec("delayed", 1))
    handler = AsyncMock(side_effect=RuntimeError("turn failed"))

    await scheduler.run_pending(handler, now=datetime.now(timezone.utc) + timedelta(minutes=1))

    assert db.get_scheduled_task(task.id)["status"] == "failed"


def test_cancel_known_and_unknown(tmp_path):
    db, scheduler = _scheduler(tmp_path)
    task = scheduler.schedule("conv-1", "x", TriggerSpec("delayed", 60))

    assert scheduler.cancel(task.id) is True
    assert scheduler.cancel(task.id) is False
    assert scheduler.cancel("nope") is False
    assert db.get_scheduled_task(task.id)["status"] == "cancelled"
    assert scheduler.list_tasks("conv-1") == []


@pytest.mark.asyncio
async def test_run_forever_stops(tmp_path):
    _, scheduler = _scheduler(tmp_path)
    handler = AsyncMock()
    scheduler.stop()

    await scheduler.run_forever(handler)

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_blocked_task_does_not_hold_up_other_conversations(tmp_path):
    _, scheduler = _scheduler(tmp_path)
    scheduler.schedule("A", "slow turn", TriggerSpec("delayed", 1))
    scheduler.schedule("B", "quick turn", TriggerSpec("delayed", 1))
    release = asyncio.Event()
    b_fired = asyncio.Event()
    fired: list[str] = []

    async def handler(task):
        fired.append(task.conversation_id)
        if task.conversation_id == "A":
            await release.wait()
        else:
            b_fired.set()

    run = asyncio.create_task(scheduler.run_pending(handler, now=datetime.now(timezone.utc) + timedelta(minutes=1)))
    await asyncio.wait_for(b_fired.wait(), timeout=1)

    assert sorted(fired) == ["A", "B"]
    assert not run.done()
    release.set()
    assert await run == 2


@pytest.mark.asyncio
async def test_run_forever_keeps_polling_while_a_handler_is_stuck(tmp_path):
    db, scheduler = _scheduler(tmp_path)
    stuck = scheduler.schedule("A", "stuck turn", TriggerSpec("delayed", 1))
    db.reschedule_task(stuck.id, datetime.now(timezone.utc) - timedelta(seconds=1))
    release = asyncio.Event()
    b_fired = asyncio.Event()

    async def handler(task):
        if task.conversation_id == "A":
            await release.wait()
        else:
            b_fired.set()

    loop_task = asyncio.create_task(scheduler.run_forever(handler))
    await asyncio.sleep(0.05)
    later = scheduler.schedule("B", "later turn", TriggerSpec("delayed", 1))
    db.reschedule_task(later.id, datetime.now(timezone.utc) - timedelta(seconds=1))

    await asyncio.wait_for(b_fired.wait(), timeout=1)

    assert db.get_scheduled_task(stuck.id)["status"] == "running"
    scheduler.stop()
    release.set()
    await asyncio.wait_for(loop_task, timeout=1)
    await asyncio.sleep(0.05)
    assert db.get_scheduled_task(stuck.id)["status"] == "completed"
