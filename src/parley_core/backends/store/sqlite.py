"""SQLite message store."""

import asyncio
import json
import sqlite3
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

from parley_core.exceptions import MessageNotFoundError, SessionNotFoundError
from parley_core.protocols.message_store import (
    MessageRecord,
    MessageUpdate,
    NewMessage,
    SessionRecord,
)
from parley_core.sessions.history import DEFAULT_TITLE, generate_title

SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at REAL NOT NULL,
    content_type TEXT NOT NULL DEFAULT 'text',
    tool_type TEXT,
    tool_status TEXT,
    tool_item_id TEXT,
    tool_output_index INTEGER,
    tool_query TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, created_at);
"""


class SQLiteMessageStore:
    """SQLite message store.

    Suitable for a desktop client and small deployments. Calls into
    ``sqlite3`` are serialized by an asyncio lock.
    """

    def __init__(
        self,
        path: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize SQLite store.

        Args:
            path: Path to SQLite database file. Defaults to ./data/parley.db
                  Use ":memory:" for in-memory database.
            **kwargs: Ignored (for compatibility with other backends)
        """
        if path == ":memory:":
            self.path: str | Path = ":memory:"
        else:
            self.path = Path(path) if path else Path("./data/parley.db")
            self.path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        return self._conn

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            metadata=json.loads(row["metadata"] or "{}"),
        )

    async def create_session(self, title: str | None = None) -> SessionRecord:
        now = time.time()
        session = SessionRecord(
            id=f"session-{uuid4().hex[:12]}",
            title=title or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            conn = self._get_connection()
            conn.execute(
                "INSERT INTO chat_sessions (id, title, created_at, updated_at, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (session.id, session.title, now, now, json.dumps(session.metadata)),
            )
            conn.commit()
        return session

    async def get_session(self, session_id: str) -> SessionRecord | None:
        async with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._session_from_row(row) if row else None

    async def session_exists(self, session_id: str) -> bool:
        async with self._lock:
            row = self._get_connection().execute(
                "SELECT 1 FROM chat_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return row is not None

    async def update_session(self, session_id: str, title: str) -> SessionRecord | None:
        async with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                "UPDATE chat_sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, time.time(), session_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._session_from_row(row)

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> list[SessionRecord]:
        async with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM chat_sessions ORDER BY updated_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [self._session_from_row(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
                cursor = conn.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return cursor.rowcount > 0

    async def create_message(self, message: NewMessage) -> str:
        message_id = f"msg-{uuid4().hex[:12]}"
        now = time.time()
        async with self._lock:
            conn = self._get_connection()
            exists = conn.execute(
                "SELECT 1 FROM chat_sessions WHERE id = ?", (message.session_id,)
            ).fetchone()
            if exists is None:
                raise SessionNotFoundError(f"Session not found: {message.session_id}")

            try:
                conn.execute(
                    "INSERT INTO messages (id, session_id, role, content, status, created_at, "
                    "content_type, tool_type, tool_status, tool_item_id, tool_output_index) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        message_id,
                        message.session_id,
                        message.role,
                        message.content,
                        message.status,
                        now,
                        message.content_type,
                        message.tool_type,
                        message.tool_status,
                        message.tool_item_id,
                        message.tool_output_index,
                    ),
                )
                conn.execute(
                    "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                    (now, message.session_id),
                )

                if message.role == "user":
                    (user_count,) = conn.execute(
                        "SELECT COUNT(*) FROM messages WHERE session_id = ? AND role = 'user'",
                        (message.session_id,),
                    ).fetchone()
                    if user_count == 1:
                        conn.execute(
                            "UPDATE chat_sessions SET title = ? WHERE id = ?",
                            (generate_title(message.content), message.session_id),
                        )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return message_id

    async def update_message(self, message_id: str, update: MessageUpdate) -> None:
        changes = update.changes()
        async with self._lock:
            conn = self._get_connection()
            if not changes:
                row = conn.execute("SELECT 1 FROM messages WHERE id = ?", (message_id,)).fetchone()
                if row is None:
                    raise MessageNotFoundError(f"Message not found: {message_id}")
                return

            assignments = ", ".join(f"{column} = ?" for column in changes)
            cursor = conn.execute(
                f"UPDATE messages SET {assignments} WHERE id = ?",
                (*changes.values(), message_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise MessageNotFoundError(f"Message not found: {message_id}")

    async def append_content(self, message_id: str, text: str) -> None:
        async with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                "UPDATE messages SET content = content || ? WHERE id = ?",
                (text, message_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise MessageNotFoundError(f"Message not found: {message_id}")

    async def get_message(self, message_id: str) -> MessageRecord | None:
        async with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return MessageRecord.from_dict(dict(row)) if row else None

    async def list_messages(self, session_id: str) -> list[MessageRecord]:
        async with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY created_at ASC, rowid ASC",
                (session_id,),
            ).fetchall()
        return [MessageRecord.from_dict(dict(row)) for row in rows]

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
