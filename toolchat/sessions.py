"""Per-conversation serialization and abort signals."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

LOGGER = logging.getLogger(__name__)


class SessionManager:
    """Hands out one lock and one abort event per conversation id.

    Entries live only while a turn holds or waits for the lock, so the maps
    stay bounded by the number of conversations with a turn in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._abort_events: dict[str, asyncio.Event] = {}
        self._holders: dict[str, int] = {}

    def get_lock(self, conversation_id: str) -> asyncio.Lock:
        if conversation_id not in self._locks:
            self._locks[conversation_id] = asyncio.Lock()
        return self._locks[conversation_id]

    def abort_event(self, conversation_id: str) -> asyncio.Event:
        return self._abort_events.setdefault(conversation_id, asyncio.Event())

    @asynccontextmanager
    async def turn(self, conversation_id: str) -> AsyncIterator[asyncio.Event]:
        """Serialize a turn and yield its freshly cleared abort event."""

        self._holders[conversation_id] = self._holders.get(conversation_id, 0) + 1
        try:
            async with self.get_lock(conversation_id):
                self.clear_abort(conversation_id)
                yield self.abort_event(conversation_id)
        finally:
            self._holders[conversation_id] -= 1
            if not self._holders[conversation_id]:
                del self._holders[conversation_id]
                self._locks.pop(conversation_id, None)
                self._abort_events.pop(conversation_id, None)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._holders

    def request_abort(self, conversation_id: str) -> bool:
        """Stop the in-flight completion stream of a conversation.

        Returns False when the conversation has no turn to abort.
        """
        if not self.is_active(conversation_id):
            return False
        self.abort_event(conversation_id).set()
        LOGGER.info("Abort requested for conversation %s", conversation_id)
        return True

    def clear_abort(self, conversation_id: str) -> None:
        if conversation_id in self._abort_events:
            self._abort_events[conversation_id].clear()
