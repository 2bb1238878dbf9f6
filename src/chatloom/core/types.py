"""Shared enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(StrEnum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"

    @classmethod
    def normalize(cls, value: str | None) -> FinishReason | None:
        """Map a vendor stop/finish reason onto the normalized set."""
        if not value:
            return None
        match value:
            case "stop" | "end_turn" | "stop_sequence":
                return cls.STOP
            case "length" | "max_tokens":
                return cls.LENGTH
            case "tool_calls" | "function_call" | "tool_use":
                return cls.TOOL_CALLS
            case _:
                return cls.ERROR


class TurnState(StrEnum):
    IDLE = "idle"
    COMPOSING = "composing"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
