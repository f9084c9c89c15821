"""Tool-call orchestration: approve, execute and splice results into a message."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from toolchat.errors import UnknownTool
from toolchat.models import (
    ExecutionMode,
    Message,
    ToolCallPart,
    ToolCallStatus,
    ToolResultPart,
)
from toolchat.tools.base import ToolContext
from toolchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

DENIAL_MARKER = "Error: User denied access to tool execution"

_OPEN_STATUSES = frozenset({ToolCallStatus.REQUESTED, ToolCallStatus.AWAITING_CONFIRMATION})


@dataclass(slots=True)
class OrchestrationResult:
    """Outcome of one orchestration pass over an assistant message."""

    message: Message
    resolved: list[str] = field(default_factory=list)
    awaiting: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.resolved)

    @property
    def needs_continuation(self) -> bool:
        """True when the model should see new results and nothing is blocked."""

        return bool(self.resolved) and not self.awaiting


def has_open_calls(message: Message) -> bool:
    return any(call.status in _OPEN_STATUSES for call in message.tool_calls())


class ToolCallOrchestrator:
    """Runs AUTOMATIC calls, gates CONFIRM calls on confirmation records."""

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    async def process(
        self,
        message: Message,
        confirmations: Mapping[str, bool],
        context: ToolContext,
    ) -> OrchestrationResult:
        """Advance every open tool call of ``message``.

        The input message is left untouched; the returned result carries an
        updated copy with a ToolResultPart appended for each call that reached
        a terminal state. Calls whose CONFIRM tool has no confirmation record
        stay ``awaiting-confirmation``.
        """
        updated = copy.deepcopy(message)
        result = OrchestrationResult(message=updated)
        executing: list[ToolCallPart] = []

        for call in updated.tool_calls():
            if call.status not in _OPEN_STATUSES or updated.result_for(call.call_id) is not None:
                continue
            try:
                definition = self._registry.get(call.tool_name)
            except UnknownTool as exc:
                # Stale awaiting calls cannot move to failed; only fresh requests can.
                if call.status is ToolCallStatus.REQUESTED:
                    call.advance(ToolCallStatus.FAILED)
                    self._attach(updated, call, f"Error: {exc}", is_error=True)
                    result.resolved.append(call.call_id)
                continue

            if definition.execution_mode is ExecutionMode.AUTOMATIC:
                if call.status is ToolCallStatus.REQUESTED:
                    call.advance(ToolCallStatus.EXECUTING)
                    executing.append(call)
                continue

            if call.status is ToolCallStatus.REQUESTED:
                call.advance(ToolCallStatus.AWAITING_CONFIRMATION)
            approved = confirmations.get(call.call_id)
            if approved is None:
                result.awaiting.append(call.call_id)
            elif approved:
                call.advance(ToolCallStatus.EXECUTING)
                executing.append(call)
            else:
                call.advance(ToolCallStatus.DENIED)
                self._attach(updated, call, DENIAL_MARKER, is_error=True)
                result.resolved.append(call.call_id)
                LOGGER.info("Tool call %s (%s) denied", call.call_id, call.tool_name)

        if executing:
            outcomes = await asyncio.gather(*(self._execute(call, context) for call in executing))
            for call, (output, failed) in zip(executing, outcomes):
                call.advance(ToolCallStatus.FAILED if failed else ToolCallStatus.COMPLETED)
                self._attach(updated, call, output, is_error=failed)
                result.resolved.append(call.call_id)

        return result

    async def _execute(self, call: ToolCallPart, context: ToolContext) -> tuple[Any, bool]:
        LOGGER.info("Executing tool %s (id=%s)", call.tool_name, call.call_id)
        try:
            output = await self._registry.execute(context.conversation_id, call.tool_name, call.args, context)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s (id=%s) failed: %s", call.tool_name, call.call_id, exc)
            return f"Error: {exc}", True
        return output, False

    @staticmethod
    def _attach(message: Message, call: ToolCallPart, output: Any, is_error: bool) -> None:
        message.parts.append(ToolResultPart(call_id=call.call_id, output=output, is_error=is_error))
