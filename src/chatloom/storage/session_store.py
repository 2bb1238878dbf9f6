"""Session repository: long-term sessions plus the single "recent" slot."""

from __future__ import annotations

import json
from typing import Any, Optional

from chatloom.core.models import Message, SessionSnapshot, ToolCall, now_ms
from chatloom.core.types import Role
from chatloom.errors import ChatloomError, SessionNotFoundError
from chatloom.log import get_logger
from chatloom.storage.database import Database
from chatloom.storage.models import SessionInfo

logger = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class SessionStore:
    """CRUD over persisted sessions, backed by SQLite."""

    def __init__(self, db: Database | str, recent_ttl_days: int = 7):
        self._db = db if isinstance(db, Database) else Database(db)
        self._recent_ttl_ms = recent_ttl_days * DAY_MS

    async def initialize(self) -> None:
        await self._db.initialize()

    async def close(self) -> None:
        await self._db.close()

    # -- long-term sessions ----------------------------------------------

    async def save_session(self, snapshot: SessionSnapshot) -> None:
        """Create or replace a session and its full message list.

        Runs as one transaction and rolls back when any statement fails.
        """
        conn = self._db.conn
        try:
            await conn.execute(
                """INSERT INTO sessions (id, title, created_at, updated_at, metadata_json)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title,
                       updated_at = excluded.updated_at,
                       metadata_json = excluded.metadata_json""",
                (
                    snapshot.id,
                    snapshot.title,
                    snapshot.created_at,
                    snapshot.updated_at,
                    json.dumps(snapshot.metadata, ensure_ascii=False, default=str),
                ),
            )
            await conn.execute("DELETE FROM session_messages WHERE session_id = ?", (snapshot.id,))
            await conn.executemany(
                """INSERT INTO session_messages
                   (session_id, position, message_id, role, content,
                    tool_calls_json, tool_call_id, name, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [self._message_row(snapshot.id, position, msg) for position, msg in enumerate(snapshot.messages)],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            logger.warning("session_save_rolled_back", session_id=snapshot.id)
            raise
        logger.debug("session_saved", session_id=snapshot.id, messages=len(snapshot.messages))

    async def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        cursor = await self._db.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await self._db.conn.execute(
            "SELECT * FROM session_messages WHERE session_id = ? ORDER BY position ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return SessionSnapshot(
            id=row["id"],
            title=row["title"],
            messages=[self._row_to_message(r) for r in rows],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            metadata=json.loads(row["metadata_json"]),
        )

    async def list_sessions(self, limit: Optional[int] = None) -> list[SessionInfo]:
        """Sessions ordered by most recently updated first."""
        query = """SELECT s.*, COUNT(m.position) AS message_count
                   FROM sessions s
                   LEFT JOIN session_messages m ON m.session_id = s.id
                   GROUP BY s.id
                   ORDER BY s.updated_at DESC"""
        params: tuple[Any, ...] = ()
        if limit:
            query += " LIMIT ?"
            params = (limit,)
        cursor = await self._db.conn.execute(query, params)
        rows = await cursor.fetchall()
        return [
            SessionInfo(
                id=row["id"],
                title=row["title"],
                message_count=row["message_count"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                metadata=json.loads(row["metadata_json"]),
            )
            for row in rows
        ]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns whether it existed."""
        conn = self._db.conn
        await conn.execute("DELETE FROM session_messages WHERE session_id = ?", (session_id,))
        cursor = await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await conn.commit()
        return cursor.rowcount > 0

    async def export_session(self, session_id: str) -> str:
        """Serialize a session as indented JSON."""
        snapshot = await self.get_session(session_id)
        if snapshot is None:
            raise SessionNotFoundError(session_id)
        return json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)

    async def import_session(self, payload: str) -> SessionSnapshot:
        """Store a session previously produced by ``export_session``."""
        try:
            snapshot = SessionSnapshot.from_dict(json.loads(payload))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ChatloomError(f"Invalid session payload: {exc}") from exc
        await self.save_session(snapshot)
        logger.info("session_imported", session_id=snapshot.id, messages=len(snapshot.messages))
        return snapshot

    # -- recent slot -----------------------------------------------------

    async def save_recent(self, session_id: str, messages: list[Message]) -> None:
        await self._db.conn.execute(
            """INSERT INTO recent_session (slot, session_id, messages_json, saved_at)
               VALUES (1, ?, ?, ?)
               ON CONFLICT(slot) DO UPDATE SET
                   session_id = excluded.session_id,
                   messages_json = excluded.messages_json,
                   saved_at = excluded.saved_at""",
            (
                session_id,
                json.dumps([m.to_dict() for m in messages], ensure_ascii=False),
                now_ms(),
            ),
        )
        await self._db.conn.commit()

    async def get_recent(self) -> Optional[SessionSnapshot]:
        """The recent session, or None when absent or older than the TTL."""
        cursor = await self._db.conn.execute("SELECT * FROM recent_session WHERE slot = 1")
        row = await cursor.fetchone()
        if row is None:
            return None

        if now_ms() - row["saved_at"] > self._recent_ttl_ms:
            logger.info("recent_session_expired", session_id=row["session_id"])
            await self.clear_recent()
            return None

        messages = [Message.from_dict(m) for m in json.loads(row["messages_json"])]
        return SessionSnapshot(
            id=row["session_id"],
            messages=messages,
            created_at=row["saved_at"],
            updated_at=row["saved_at"],
        )

    async def clear_recent(self) -> None:
        await self._db.conn.execute("DELETE FROM recent_session")
        await self._db.conn.commit()

    @staticmethod
    def _message_row(session_id: str, position: int, msg: Message) -> tuple[Any, ...]:
        tool_calls = json.dumps([tc.to_openai() for tc in msg.tool_calls]) if msg.tool_calls else None
        return (
            session_id,
            position,
            msg.id,
            msg.role.value,
            msg.content,
            tool_calls,
            msg.tool_call_id,
            msg.name,
            msg.timestamp,
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        tool_calls = json.loads(row["tool_calls_json"]) if row["tool_calls_json"] else []
        return Message(
            id=row["message_id"],
            role=Role(row["role"]),
            content=row["content"],
            tool_calls=[ToolCall.from_openai(tc) for tc in tool_calls],
            tool_call_id=row["tool_call_id"],
            name=row["name"],
            timestamp=row["timestamp"],
        )
