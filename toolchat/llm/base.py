"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from toolchat.models import LLMEvent


class LLMProvider(ABC):
    """Abstract model provider used by the completion driver."""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMEvent]:
        """Stream one model call as text deltas, tool calls and a step finish.

        Raises:
            CompletionStreamError: if the request fails.
        """
