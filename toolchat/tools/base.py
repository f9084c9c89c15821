"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from toolchat.models import ExecutionMode

if TYPE_CHECKING:
    from toolchat.schedule_bridge import SchedulerBridge


@dataclass(slots=True)
class ToolContext:
    """Collaborators a tool handler may use during one call."""

    conversation_id: str
    scheduler: SchedulerBridge | None = None


class Tool(ABC):
    """Base class for all assistant tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]
    execution_mode: ExecutionMode = ExecutionMode.AUTOMATIC

    @abstractmethod
    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        """Execute tool with validated arguments."""
