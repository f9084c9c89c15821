"""Command dispatcher for @-prefixed messages.

Commands bypass the model and act on conversation state directly.
An unrecognised @command returns None, letting it fall through to the model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from toolchat.errors import InvalidSchedule

if TYPE_CHECKING:
    from toolchat.agent_runtime import AgentRuntime
    from toolchat.db import Database
    from toolchat.schedule_bridge import SchedulerBridge

LOGGER = logging.getLogger(__name__)

# Commands after which the caller should run a resume turn.
RESUMING_COMMANDS = frozenset({"approve", "deny"})


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split an @-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid @command.
    """
    text = text.strip()
    if not text.startswith("@"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class CommandDispatcher:
    """Routes @-prefixed messages to state operations, bypassing the model.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(
        self,
        runtime: AgentRuntime | None = None,
        db: Database | None = None,
        scheduler: SchedulerBridge | None = None,
    ) -> None:
        self._runtime = runtime
        self._db = db
        self._scheduler = scheduler

    async def dispatch(self, conversation_id: str, text: str) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command == "clear":
            return self._handle_clear(conversation_id)
        if command == "tasks":
            return self._handle_tasks(conversation_id)
        if command == "cancel":
            return self._handle_cancel(args)
        if command in RESUMING_COMMANDS:
            return self._handle_confirmation(conversation_id, args, approved=command == "approve")
        return None

    def _handle_clear(self, conversation_id: str) -> str:
        if self._db is None:
            return "History clearing is not available."
        self._db.clear_history(conversation_id)
        return "Conversation history cleared."

    def _handle_tasks(self, conversation_id: str) -> str:
        if self._scheduler is None:
            return "Scheduling is not available."
        tasks = self._scheduler.list(conversation_id)
        if not tasks:
            return "No scheduled tasks found."
        return "\n".join(
            f"{task.id}: {task.description} ({task.trigger.type} {task.trigger.describe()}, "
            f"next {task.next_run_at.isoformat()})"
            for task in tasks
        )

    def _handle_cancel(self, args: list[str]) -> str:
        if self._scheduler is None:
            return "Scheduling is not available."
        if not args:
            return "Usage: @cancel <task id>"
        try:
            self._scheduler.cancel(args[0])
        except InvalidSchedule as exc:
            return str(exc)
        return f"Task {args[0]} has been successfully canceled."

    def _handle_confirmation(self, conversation_id: str, args: list[str], approved: bool) -> str:
        if self._runtime is None:
            return "Confirmations are not available."
        if not args:
            return f"Usage: @{'approve' if approved else 'deny'} <call id>"
        self._runtime.confirm(conversation_id, args[0], approved)
        return f"Tool call {args[0]} {'approved' if approved else 'denied'}."
