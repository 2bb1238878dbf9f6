"""Context window: bounded transcript plus per-turn selection under budgets.

Selection order for a turn:
1. pinned messages, always first
2. the most recent ``max_messages`` transcript entries
3. duplicate ids removed (the pinned copy wins)
4. token-budget trimming from newest to oldest

Token costs are an approximation (about four characters per token), not a
real tokenizer count.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

from chatloom.config import MemoryConfig
from chatloom.core.models import ContextSnapshot, Message
from chatloom.log import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ceil(len / 4). Not exact."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ContextWindow:
    """Holds the transcript and computes the sendable subset on demand."""

    def __init__(self, config: MemoryConfig | None = None):
        self._config = config or MemoryConfig()
        self._messages: list[Message] = []
        self._pinned: list[Message] = []
        self._system_prompt: Optional[str] = None

    @property
    def config(self) -> MemoryConfig:
        return self._config

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    @property
    def pinned(self) -> list[Message]:
        return list(self._pinned)

    def set_system_prompt(self, prompt: str) -> None:
        """Set the system prompt. While locked, the first write wins."""
        if self._config.system_prompt_locked and self._system_prompt:
            logger.debug("system_prompt_locked")
            return
        self._system_prompt = prompt

    def pin(self, messages: Iterable[Message]) -> None:
        """Replace the pinned set."""
        self._pinned = list(messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)
        self._trim()

    def append_many(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)
        self._trim()

    def sendable_subset(self) -> ContextSnapshot:
        recent = self._messages[-self._config.max_messages :] if self._config.max_messages > 0 else []

        seen: set[str] = set()
        candidates: list[Message] = []
        for msg in [*self._pinned, *recent]:
            if msg.id in seen:
                continue
            seen.add(msg.id)
            candidates.append(msg)

        kept, trimmed = self._trim_by_tokens(candidates)
        if trimmed:
            logger.debug("window_token_trimmed", kept=len(kept), trimmed=len(trimmed))
        return ContextSnapshot(
            messages=kept,
            system_prompt=self._system_prompt or None,
            trimmed=trimmed,
        )

    def all(self) -> list[Message]:
        return list(self._messages)

    def clear(self) -> None:
        """Drop the transcript; the system prompt and pins survive."""
        self._messages = []

    def configure(self, **changes: Any) -> None:
        self._config = self._config.model_copy(update=changes)
        self._trim()

    def __len__(self) -> int:
        return len(self._messages)

    def _trim(self) -> None:
        limit = self._config.max_messages
        if len(self._messages) > limit:
            self._messages = self._messages[-limit:] if limit > 0 else []

    def _trim_by_tokens(self, messages: list[Message]) -> tuple[list[Message], list[Message]]:
        budget = self._config.max_tokens
        if budget <= 0 or not messages:
            return messages, []

        total = estimate_tokens(self._system_prompt) if self._system_prompt else 0
        start = len(messages)
        for index in range(len(messages) - 1, -1, -1):
            cost = estimate_tokens(messages[index].content)
            if total + cost > budget:
                break
            total += cost
            start = index

        if start == len(messages):
            # Nothing fits: keep the newest message anyway rather than send nothing.
            return messages[-1:], messages[:-1]
        return messages[start:], messages[:start]
