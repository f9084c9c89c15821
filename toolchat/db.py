"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from toolchat.models import Message

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                message_id TEXT NOT NULL,
                role TEXT NOT NULL,
                message_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id)
            );

            CREATE TABLE IF NOT EXISTS confirmations (
                conversation_id TEXT NOT NULL,
                call_id TEXT NOT NULL,
                approved INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (conversation_id, call_id)
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                description TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_value TEXT NOT NULL,
                next_run_at TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )

    def upsert_conversation(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO conversations(conversation_id, created_at) VALUES (?, ?)",
                (conversation_id, _utc_now_iso()),
            )

    def append_message(self, conversation_id: str, message: Message) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages(conversation_id, message_id, role, message_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    message.id,
                    message.role.value,
                    json.dumps(message.to_dict(), default=str),
                    _utc_now_iso(),
                ),
            )

    def replace_last_message(self, conversation_id: str, message: Message) -> None:
        """Overwrite the most recent message of a conversation."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM messages WHERE conversation_id = ? ORDER BY id DESC LIMIT 1",
                (conversation_id,),
            ).fetchone()
            if row is None:
                raise LookupError(f"Conversation {conversation_id} has no messages to replace")
            conn.execute(
                "UPDATE messages SET message_id = ?, role = ?, message_json = ? WHERE id = ?",
                (message.id, message.role.value, json.dumps(message.to_dict(), default=str), row["id"]),
            )

    def get_messages(self, conversation_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT message_json FROM messages WHERE conversation_id = ? ORDER BY id ASC",
                (conversation_id,),
            ).fetchall()
        return [Message.from_dict(json.loads(row["message_json"])) for row in rows]

    def clear_history(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM confirmations WHERE conversation_id = ?", (conversation_id,))

    def record_confirmation(self, conversation_id: str, call_id: str, approved: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO confirmations(conversation_id, call_id, approved, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id, call_id) DO UPDATE SET
                    approved=excluded.approved,
                    created_at=excluded.created_at
                """,
                (conversation_id, call_id, int(approved), _utc_now_iso()),
            )

    def get_confirmations(self, conversation_id: str) -> dict[str, bool]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT call_id, approved FROM confirmations WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchall()
        return {row["call_id"]: bool(row["approved"]) for row in rows}

    def log_tool_execution(
        self,
        conversation_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(conversation_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    tool_name,
                    json.dumps(tool_input, default=str),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, input_json, output_json, succeeded
                FROM tool_executions
                WHERE conversation_id = ?
                ORDER BY id ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def create_scheduled_task(
        self,
        task_id: str,
        conversation_id: str,
        description: str,
        trigger_type: str,
        trigger_value: str,
        next_run_at: datetime,
    ) -> None:
        now = _utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks(
                    id, conversation_id, description, trigger_type, trigger_value,
                    next_run_at, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    task_id,
                    conversation_id,
                    description,
                    trigger_type,
                    trigger_value,
                    next_run_at.astimezone(timezone.utc).isoformat(),
                    now,
                    now,
                ),
            )

    def get_scheduled_task(self, task_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row) if row else None

    def list_scheduled_tasks(self, conversation_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM scheduled_tasks WHERE status IN ('pending', 'running')"
        params: tuple[Any, ...] = ()
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params = (conversation_id,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY next_run_at ASC", params).fetchall()
        return [dict(row) for row in rows]

    def get_due_tasks(self, now: datetime) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM scheduled_tasks
                WHERE status = 'pending' AND next_run_at <= ?
                ORDER BY next_run_at ASC
                """,
                (now.astimezone(timezone.utc).isoformat(),),
            ).fetchall()
        return [dict(row) for row in rows]

    def mark_task_status(self, task_id: str, status: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET status = ?, updated_at = ? WHERE id = ?",
                (status, _utc_now_iso(), task_id),
            )

    def reschedule_task(self, task_id: str, next_run_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET status = 'pending', next_run_at = ?, updated_at = ? WHERE id = ?",
                (next_run_at.astimezone(timezone.utc).isoformat(), _utc_now_iso(), task_id),
            )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
