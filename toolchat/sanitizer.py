"""Normalize stored conversation history before it reaches the model."""

from __future__ import annotations

from dataclasses import replace

from toolchat.models import Message, Part, ToolCallPart, ToolCallStatus, ToolResultPart

# Calls in these states without a result are half-finished tool use.
_UNFINISHED = frozenset({ToolCallStatus.REQUESTED, ToolCallStatus.EXECUTING})


def sanitize(messages: list[Message]) -> list[Message]:
    """Return a copy of ``messages`` that is safe to send to a completion call.

    Orphaned or duplicate tool results are removed, and messages whose only
    content is unfinished tool calls are dropped. Calls awaiting confirmation
    are kept so they can be resumed. The function is pure and idempotent.
    """

    cleaned: list[Message] = []
    for message in messages:
        parts = _drop_orphan_results(message.parts)
        if not parts or _only_unfinished_calls(parts):
            continue
        cleaned.append(replace(message, parts=parts, metadata=dict(message.metadata)))
    return cleaned


def _drop_orphan_results(parts: list[Part]) -> list[Part]:
    seen_calls: set[str] = set()
    answered: set[str] = set()
    kept: list[Part] = []
    for part in parts:
        if isinstance(part, ToolCallPart):
            seen_calls.add(part.call_id)
        elif isinstance(part, ToolResultPart):
            if part.call_id not in seen_calls or part.call_id in answered:
                continue
            answered.add(part.call_id)
        kept.append(part)
    return kept


def _only_unfinished_calls(parts: list[Part]) -> bool:
    answered = {part.call_id for part in parts if isinstance(part, ToolResultPart)}
    for part in parts:
        if not isinstance(part, ToolCallPart):
            return False
        if part.status not in _UNFINISHED or part.call_id in answered:
            return False
    return True
