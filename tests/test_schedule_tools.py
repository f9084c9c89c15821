from datetime import datetime, timedelta, timezone

import pytest

from toolchat.db import Database
from toolchat.models import ExecutionMode
from toolchat.schedule_bridge import SchedulerBridge
from toolchat.scheduler import TaskScheduler
from toolchat.tools.base import ToolContext
from toolchat.tools.schedule_tools import CancelScheduledTaskTool, GetScheduledTasksTool, ScheduleTaskTool


def _context(tmp_path) -> ToolContext:
    db = Database(tmp_path / "toolchat.db")
    db.initialize()
    return ToolContext(conversation_id="conv-1", scheduler=SchedulerBridge(TaskScheduler(db=db)))


@pytest.mark.asyncio
async def test_schedule_tomorrow_reminder(tmp_path):
    context = _context(tmp_path)
    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)

    result = await ScheduleTaskTool().run(
        context,
        description="call mom",
        when={"type": "scheduled", "date": tomorrow.isoformat()},
    )

    assert result == f'Task scheduled for type "scheduled" : {tomorrow.isoformat()}'
    tasks = context.scheduler.list("conv-1")
    assert len(tasks) == 1
    assert tasks[0].description == "call mom"
    assert tasks[0].next_run_at == tomorrow


@pytest.mark.asyncio
async def test_schedule_delayed_task(tmp_path):
    context = _context(tmp_path)

    result = await ScheduleTaskTool().run(context, description="stretch", when={"type": "delayed", "delayInSeconds": 600})

    assert result == 'Task scheduled for type "delayed" : 600'


@pytest.mark.asyncio
async def test_invalid_schedule_is_returned_as_text(tmp_path):
    context = _context(tmp_path)

    result = await ScheduleTaskTool().run(context, description="x", when={"type": "no-schedule"})

    assert result.startswith("Error scheduling task:")
    assert context.scheduler.list("conv-1") == []


@pytest.mark.asyncio
async def test_list_tasks_empty_and_populated(tmp_path):
    context = _context(tmp_path)
    tool = GetScheduledTasksTool()

    assert await tool.run(context) == "No scheduled tasks found."

    await ScheduleTaskTool().run(context, description="daily", when={"type": "cron", "cron": "0 8 * * *"})
    listed = await tool.run(context)

    assert isinstance(listed, list)
    assert listed[0]["description"] == "daily"
    assert listed[0]["type"] == "cron"
    assert listed[0]["trigger"] == "0 8 * * *"


@pytest.mark.asyncio
async def test_cancel_task(tmp_path):
    context = _context(tmp_path)
    await ScheduleTaskTool().run(context, description="x", when={"type": "delayed", "delayInSeconds": 60})
    task_id = context.scheduler.list("conv-1")[0].id

    result = await CancelScheduledTaskTool().run(context, taskId=task_id)

    assert result == f"Task {task_id} has been successfully canceled."
    assert context.scheduler.list("conv-1") == []


@pytest.mark.asyncio
async def test_cancel_unknown_task_is_reported(tmp_path):
    context = _context(tmp_path)

    result = await CancelScheduledTaskTool().run(context, taskId="nope")

    assert result.startswith("Error canceling task nope:")


@pytest.mark.asyncio
async def test_tools_need_a_scheduler():
    with pytest.raises(RuntimeError):
        await GetScheduledTasksTool().run(ToolContext(conversation_id="conv-1"))


def test_schedule_tool_mode_is_configurable():
    assert ScheduleTaskTool().execution_mode is ExecutionMode.AUTOMATIC
    assert ScheduleTaskTool(ExecutionMode.CONFIRM).execution_mode is ExecutionMode.CONFIRM
