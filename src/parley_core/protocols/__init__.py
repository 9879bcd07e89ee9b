"""Protocol interfaces for pluggable backends."""

from parley_core.protocols.message_store import (
    MessageRecord,
    MessageStatus,
    MessageStore,
    MessageUpdate,
    NewMessage,
    SessionRecord,
)

__all__ = [
    "MessageRecord",
    "MessageStatus",
    "MessageStore",
    "MessageUpdate",
    "NewMessage",
    "SessionRecord",
]
