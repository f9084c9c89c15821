"""Policies deciding which tools are offered to the model on a turn."""

from __future__ import annotations

from typing import Callable, Iterable, Literal, Sequence, Union

from toolchat.models import Message, Role

ToolSubset = Union[set[str], Literal["all"]]

ToolTrigger = Callable[[Sequence[Message]], ToolSubset]

DEFAULT_KEYWORDS = ("weather", "time", "schedule", "remind", "task")


def last_user_text(messages: Sequence[Message]) -> str:
    for message in reversed(messages):
        if message.role is Role.USER:
            return message.text
    return ""


class KeywordTrigger:
    """Offer every tool when the latest user text mentions a keyword."""

    def __init__(self, keywords: Iterable[str] = DEFAULT_KEYWORDS) -> None:
        self._keywords = tuple(k.strip().lower() for k in keywords if k.strip())

    def __call__(self, messages: Sequence[Message]) -> set[str] | Literal["all"]:
        text = last_user_text(messages).lower()
        if any(keyword in text for keyword in self._keywords):
            return "all"
        return set()


def always_all(messages: Sequence[Message]) -> set[str] | Literal["all"]:
    return "all"
