"""Persistence contract consumed by the orchestrator."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from chatloom.core.models import Message, SessionSnapshot


@runtime_checkable
class PersistenceBackend(Protocol):
    async def save_recent(self, session_id: str, messages: list[Message]) -> None:
        ...

    async def save_session(self, snapshot: SessionSnapshot) -> None:
        ...

    async def get_recent(self) -> Optional[SessionSnapshot]:
        ...
