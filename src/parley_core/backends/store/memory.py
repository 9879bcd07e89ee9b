"""In-memory message store."""

import asyncio
import time
from dataclasses import replace
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


class MemoryMessageStore:
    """In-memory message store.

    Suitable for development and testing. Data is lost on restart.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize memory store.

        Args:
            **kwargs: Ignored (for compatibility with other backends)
        """
        self._sessions: dict[str, SessionRecord] = {}
        self._messages: dict[str, MessageRecord] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, title: str | None = None) -> SessionRecord:
        now = time.time()
        session = SessionRecord(
            id=f"session-{uuid4().hex[:12]}",
            title=title or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._sessions[session.id] = session
        return replace(session)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    async def session_exists(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self._sessions

    async def update_session(self, session_id: str, title: str) -> SessionRecord | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.title = title
            session.updated_at = time.time()
            return replace(session)

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> list[SessionRecord]:
        async with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)
            return [replace(s) for s in sessions[offset:offset + limit]]

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return False
            for message_id in [m.id for m in self._messages.values() if m.session_id == session_id]:
                del self._messages[message_id]
            return True

    async def create_message(self, message: NewMessage) -> str:
        async with self._lock:
            session = self._sessions.get(message.session_id)
            if session is None:
                raise SessionNotFoundError(f"Session not found: {message.session_id}")

            now = time.time()
            record = MessageRecord(
                id=f"msg-{uuid4().hex[:12]}",
                session_id=message.session_id,
                role=message.role,
                content=message.content,
                status=message.status,
                created_at=now,
                content_type=message.content_type,
                tool_type=message.tool_type,
                tool_status=message.tool_status,
                tool_item_id=message.tool_item_id,
                tool_output_index=message.tool_output_index,
            )
            self._messages[record.id] = record

            session.updated_at = now
            if message.role == "user" and self._user_message_count(message.session_id) == 1:
                session.title = generate_title(message.content)

            return record.id

    def _user_message_count(self, session_id: str) -> int:
        return sum(
            1 for m in self._messages.values()
            if m.session_id == session_id and m.role == "user"
        )

    async def update_message(self, message_id: str, update: MessageUpdate) -> None:
        async with self._lock:
            record = self._messages.get(message_id)
            if record is None:
                raise MessageNotFoundError(f"Message not found: {message_id}")
            for key, value in update.changes().items():
                setattr(record, key, value)

    async def append_content(self, message_id: str, text: str) -> None:
        async with self._lock:
            record = self._messages.get(message_id)
            if record is None:
                raise MessageNotFoundError(f"Message not found: {message_id}")
            record.content += text

    async def get_message(self, message_id: str) -> MessageRecord | None:
        async with self._lock:
            record = self._messages.get(message_id)
            return replace(record) if record else None

    async def list_messages(self, session_id: str) -> list[MessageRecord]:
        async with self._lock:
            return [replace(m) for m in self._messages.values() if m.session_id == session_id]

    async def close(self) -> None:
        """No-op for memory store."""
        pass

    async def clear(self) -> None:
        """Clear all data. Useful for testing."""
        async with self._lock:
            self._sessions.clear()
            self._messages.clear()
