from datetime import datetime, timedelta, timezone

import pytest

from toolchat.db import Database
from toolchat.models import Message, Role, TextPart, ToolCallPart, ToolCallStatus, ToolResultPart, user_message


def _db(tmp_path) -> Database:
    db = Database(tmp_path / "toolchat.db")
    db.initialize()
    db.upsert_conversation("conv-1")
    return db


def test_messages_round_trip_with_parts(tmp_path):
    db = _db(tmp_path)
    assistant = Message(
        role=Role.ASSISTANT,
        parts=[
            TextPart("Checking."),
            ToolCallPart("c1", "getWeatherInformation", {"city": "Paris"}, ToolCallStatus.COMPLETED),
            ToolResultPart("c1", "Sunny"),
        ],
    )
    db.append_message("conv-1", user_message("weather in Paris?"))
    db.append_message("conv-1", assistant)

    history = db.get_messages("conv-1")

    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]
    assert history[1] == assistant


def test_replace_last_message_overwrites_only_the_last(tmp_path):
    db = _db(tmp_path)
    first = user_message("hi")
    db.append_message("conv-1", first)
    db.append_message("conv-1", Message(role=Role.ASSISTANT, parts=[TextPart("draft")]))

    replacement = Message(role=Role.ASSISTANT, parts=[TextPart("final")])
    db.replace_last_message("conv-1", replacement)

    history = db.get_messages("conv-1")
    assert history == [first, replacement]


def test_replace_last_message_requires_history(tmp_path):
    db = _db(tmp_path)
    with pytest.raises(LookupError):
        db.replace_last_message("conv-1", user_message("x"))


def test_confirmations_are_upserted(tmp_path):
    db = _db(tmp_path)
    db.record_confirmation("conv-1", "c1", True)
    db.record_confirmation("conv-1", "c1", False)
    db.record_confirmation("conv-1", "c2", True)

    assert db.get_confirmations("conv-1") == {"c1": False, "c2": True}
    assert db.get_confirmations("conv-2") == {}


def test_due_tasks(tmp_path):
    db = _db(tmp_path)

    due_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.create_scheduled_task("t1", "conv-1", "ping", "delayed", "60", due_at)
    db.create_scheduled_task("t2", "conv-1", "later", "delayed", "3600", due_at + timedelta(hours=2))

    due = db.get_due_tasks(datetime.now(timezone.utc))
    assert len(due) == 1
    assert due[0]["description"] == "ping"


def test_cancelled_tasks_are_not_listed(tmp_path):
    db = _db(tmp_path)
    run_at = datetime.now(timezone.utc) + timedelta(hours=1)
    db.create_scheduled_task("t1", "conv-1", "a", "delayed", "3600", run_at)
    db.create_scheduled_task("t2", "conv-1", "b", "delayed", "3600", run_at)
    db.mark_task_status("t1", "cancelled")

    assert [row["id"] for row in db.list_scheduled_tasks("conv-1")] == ["t2"]


def test_clear_history_removes_messages_and_confirmations(tmp_path):
    db = _db(tmp_path)
    db.upsert_conversation("conv-2")
    db.append_message("conv-1", user_message("hello"))
    db.append_message("conv-2", user_message("hey"))
    db.record_confirmation("conv-1", "c1", True)

    db.clear_history("conv-1")

    assert db.get_messages("conv-1") == []
    assert db.get_confirmations("conv-1") == {}
    assert len(db.get_messages("conv-2")) == 1


def test_initialize_rejects_unknown_schema_version(tmp_path):
    db = _db(tmp_path)
    with db._connect() as conn:
        conn.execute("UPDATE schema_version SET version = 99")

    with pytest.raises(RuntimeError):
        db.initialize()
