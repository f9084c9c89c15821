"""Core domain models used across layers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from toolchat.errors import InvalidTransition


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ExecutionMode(str, Enum):
    """How a tool call is allowed to run."""

    AUTOMATIC = "automatic"
    CONFIRM = "confirm"


class ToolCallStatus(str, Enum):
    REQUESTED = "requested"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    DENIED = "denied"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({ToolCallStatus.COMPLETED, ToolCallStatus.FAILED, ToolCallStatus.DENIED})

_ALLOWED_TRANSITIONS: dict[ToolCallStatus, frozenset[ToolCallStatus]] = {
    ToolCallStatus.REQUESTED: frozenset(
        {ToolCallStatus.EXECUTING, ToolCallStatus.AWAITING_CONFIRMATION, ToolCallStatus.FAILED}
    ),
    ToolCallStatus.AWAITING_CONFIRMATION: frozenset({ToolCallStatus.EXECUTING, ToolCallStatus.DENIED}),
    ToolCallStatus.EXECUTING: frozenset({ToolCallStatus.COMPLETED, ToolCallStatus.FAILED}),
    ToolCallStatus.COMPLETED: frozenset(),
    ToolCallStatus.FAILED: frozenset(),
    ToolCallStatus.DENIED: frozenset(),
}


@dataclass(slots=True)
class TextPart:
    text: str


@dataclass(slots=True)
class ToolCallPart:
    """A tool invocation requested by the model."""

    call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.REQUESTED

    def advance(self, status: ToolCallStatus) -> None:
        """Move to ``status``; only forward transitions are accepted."""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Tool call {self.call_id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status


@dataclass(slots=True)
class ToolResultPart:
    call_id: str
    output: Any
    is_error: bool = False


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(slots=True)
class Message:
    """One conversation turn from a single role."""

    role: Role
    parts: list[Part] = field(default_factory=list)
    id: str = field(default_factory=lambda: generate_id())
    metadata: dict[str, Any] = field(default_factory=lambda: {"createdAt": _utc_now_iso()})

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]

    def result_for(self, call_id: str) -> ToolResultPart | None:
        for part in self.parts:
            if isinstance(part, ToolResultPart) and part.call_id == call_id:
                return part
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "parts": [_part_to_dict(part) for part in self.parts],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            parts=[_part_from_dict(item) for item in data.get("parts", [])],
            metadata=dict(data.get("metadata") or {}),
        )


def user_message(text: str) -> Message:
    return Message(role=Role.USER, parts=[TextPart(text)])


def _part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ToolCallPart):
        return {
            "type": "tool-call",
            "callId": part.call_id,
            "toolName": part.tool_name,
            "args": part.args,
            "status": part.status.value,
        }
    return {"type": "tool-result", "callId": part.call_id, "output": part.output, "isError": part.is_error}


def _part_from_dict(data: dict[str, Any]) -> Part:
    kind = data.get("type")
    if kind == "text":
        return TextPart(data["text"])
    if kind == "tool-call":
        return ToolCallPart(
            call_id=data["callId"],
            tool_name=data["toolName"],
            args=dict(data.get("args") or {}),
            status=ToolCallStatus(data["status"]),
        )
    if kind == "tool-result":
        return ToolResultPart(call_id=data["callId"], output=data.get("output"), is_error=bool(data.get("isError")))
    raise ValueError(f"Unknown message part type: {kind!r}")


@dataclass(slots=True)
class Confirmation:
    """External approval or denial of a CONFIRM-mode tool call."""

    call_id: str
    approved: bool


@dataclass(slots=True, frozen=True)
class TriggerSpec:
    """When a scheduled task fires: absolute time, delay in seconds, or cron."""

    type: str
    value: datetime | int | str

    def describe(self) -> str:
        if isinstance(self.value, datetime):
            return self.value.isoformat()
        return str(self.value)


@dataclass(slots=True)
class ScheduledTask:
    """Represents a persisted scheduled task."""

    id: str
    conversation_id: str
    description: str
    trigger: TriggerSpec
    next_run_at: datetime
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "type": self.trigger.type,
            "trigger": self.trigger.describe(),
            "nextRunAt": self.next_run_at.isoformat(),
            "status": self.status,
        }


# Provider-level events produced while streaming one model call.


@dataclass(slots=True)
class TextDelta:
    text: str


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class StepFinish:
    finish_reason: str | None = None


LLMEvent = Union[TextDelta, LLMToolCall, StepFinish]


# Chunks streamed to the caller of a turn.


@dataclass(slots=True)
class TextChunk:
    text: str


@dataclass(slots=True)
class ToolCallChunk:
    call_id: str
    tool_name: str
    args: dict[str, Any]
    status: ToolCallStatus


@dataclass(slots=True)
class ToolResultChunk:
    call_id: str
    tool_name: str
    output: Any
    is_error: bool = False


@dataclass(slots=True)
class FinishChunk:
    """Terminal chunk; ``message`` is the assistant message to persist."""

    message: Message | None
    reason: str


StreamChunk = Union[TextChunk, ToolCallChunk, ToolResultChunk, FinishChunk]


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
