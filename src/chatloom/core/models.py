"""Conversation data models shared by every layer."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from chatloom.core.types import FinishReason, Role


def new_message_id() -> str:
    return f"msg-{uuid.uuid4().hex[:12]}"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A function call requested by the model. Arguments stay serialized."""

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_openai(cls, data: dict[str, Any]) -> ToolCall:
        function = data.get("function") or {}
        return cls(
            id=str(data.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=str(function.get("arguments") or ""),
            type=str(data.get("type") or "function"),
        )


@dataclass
class Message:
    id: str
    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    timestamp: Optional[int] = None

    def is_valid(self) -> bool:
        """Non-system messages need content or at least one tool call."""
        if self.role == Role.SYSTEM:
            return True
        return bool(self.content) or bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("id") or new_message_id()),
            role=Role(data["role"]),
            content=data.get("content") or "",
            tool_calls=[ToolCall.from_openai(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            timestamp=data.get("timestamp"),
        )


def user_message(content: str) -> Message:
    return Message(id=new_message_id(), role=Role.USER, content=content, timestamp=now_ms())


def system_message(content: str) -> Message:
    return Message(id=f"system-{now_ms()}", role=Role.SYSTEM, content=content, timestamp=now_ms())


@dataclass(frozen=True, slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_openai(cls, data: Optional[dict[str, Any]]) -> Optional[Usage]:
        if not isinstance(data, dict) or not data:
            return None
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = int(data.get("total_tokens") or prompt + completion)
        return cls(prompt, completion, total)

    @classmethod
    def from_anthropic(cls, data: Optional[dict[str, Any]]) -> Optional[Usage]:
        if not isinstance(data, dict) or not data:
            return None
        prompt = int(data.get("input_tokens") or 0)
        completion = int(data.get("output_tokens") or 0)
        return cls(prompt, completion, prompt + completion)

    def merge(self, other: Optional[Usage]) -> Usage:
        """Combine partial reports, preferring non-zero values from *other*."""
        if other is None:
            return self
        prompt = other.prompt_tokens or self.prompt_tokens
        completion = other.completion_tokens or self.completion_tokens
        return Usage(prompt, completion, prompt + completion)


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """Normalized unit of a streamed response."""

    content: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    done: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.done or self.finish_reason is not None


@dataclass
class ProviderResponse:
    """Result of a non-streaming call."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    raw: Any = None


@dataclass(frozen=True, slots=True)
class ContextSnapshot:
    """The window selected for one turn."""

    messages: list[Message]
    system_prompt: Optional[str] = None
    trimmed: list[Message] = field(default_factory=list)


@dataclass
class SessionSnapshot:
    """Transcript snapshot handed to the persistence layer after each turn."""

    id: str
    messages: list[Message]
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    title: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionSnapshot:
        return cls(
            id=str(data["id"]),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            created_at=int(data.get("created_at") or now_ms()),
            updated_at=int(data.get("updated_at") or now_ms()),
            title=data.get("title"),
            metadata=data.get("metadata") or {},
        )
