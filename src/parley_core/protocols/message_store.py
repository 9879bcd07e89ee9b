"""MessageStore protocol for conversation persistence backends."""

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

MessageStatus = Literal["sent", "pending", "error"]


@dataclass(frozen=True)
class NewMessage:
    """Fields for a message row to create."""

    session_id: str
    role: str  # "user", "assistant", "system" or "tool"
    content: str
    status: MessageStatus = "sent"
    content_type: str = "text"  # "text" or "tool_call"
    tool_type: str | None = None
    tool_status: str | None = None
    tool_item_id: str | None = None
    tool_output_index: int | None = None


@dataclass(frozen=True)
class MessageUpdate:
    """Partial update of a message row. ``None`` fields are left unchanged."""

    content: str | None = None
    status: MessageStatus | None = None
    tool_status: str | None = None
    tool_query: str | None = None

    def changes(self) -> dict[str, Any]:
        """Fields that carry a value."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class MessageRecord:
    """A persisted message row."""

    id: str
    session_id: str
    role: str
    content: str
    status: str
    created_at: float
    content_type: str = "text"
    tool_type: str | None = None
    tool_status: str | None = None
    tool_item_id: str | None = None
    tool_output_index: int | None = None
    tool_query: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageRecord":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            role=data["role"],
            content=data["content"],
            status=data["status"],
            created_at=data["created_at"],
            content_type=data.get("content_type") or "text",
            tool_type=data.get("tool_type"),
            tool_status=data.get("tool_status"),
            tool_item_id=data.get("tool_item_id"),
            tool_output_index=data.get("tool_output_index"),
            tool_query=data.get("tool_query"),
        )


@dataclass
class SessionRecord:
    """A chat session."""

    id: str
    title: str
    created_at: float
    updated_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": self.metadata,
        }


@runtime_checkable
class MessageStore(Protocol):
    """Protocol for message/session persistence backends.

    The streaming controller only relies on ``create_message`` and
    ``update_message``; the other operations serve the client facade and the
    HTTP surface.
    """

    async def create_message(self, message: NewMessage) -> str:
        """Create a message row and return its ID.

        Raises SessionNotFoundError if the session does not exist.
        """
        ...

    async def update_message(self, message_id: str, update: MessageUpdate) -> None:
        """Apply a partial update. Raises MessageNotFoundError if unknown."""
        ...

    async def append_content(self, message_id: str, text: str) -> None:
        """Append streamed text to a message. Raises MessageNotFoundError if unknown."""
        ...

    async def session_exists(self, session_id: str) -> bool:
        """Check whether a session exists."""
        ...

    async def create_session(self, title: str | None = None) -> SessionRecord:
        """Create a session."""
        ...

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Get a session, or None if not found."""
        ...

    async def update_session(self, session_id: str, title: str) -> SessionRecord | None:
        """Rename a session and bump ``updated_at``. Returns None if not found."""
        ...

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> list[SessionRecord]:
        """List sessions, most recently updated first."""
        ...

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns False if not found."""
        ...

    async def get_message(self, message_id: str) -> MessageRecord | None:
        """Get a message, or None if not found."""
        ...

    async def list_messages(self, session_id: str) -> list[MessageRecord]:
        """List a session's messages in creation order."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
