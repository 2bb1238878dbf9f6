"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class SessionInfo:
    id: str
    title: Optional[str]
    message_count: int
    created_at: int  # epoch milliseconds
    updated_at: int
    metadata: dict[str, Any] = field(default_factory=dict)
