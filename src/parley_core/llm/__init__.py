"""Provider adapters and canonical stream events."""

from parley_core.llm.base import (
    Attachment,
    ChatMessage,
    Done,
    Error,
    ProviderAdapter,
    StreamCallbacks,
    StreamEvent,
    TextDelta,
    ToolCallRecord,
    ToolCompleted,
    ToolProgress,
    ToolStarted,
    ToolStatus,
    ToolType,
)
from parley_core.llm.factory import ADAPTERS, AdapterSet, create_adapter

__all__ = [
    "ADAPTERS",
    "AdapterSet",
    "Attachment",
    "ChatMessage",
    "Done",
    "Error",
    "ProviderAdapter",
    "StreamCallbacks",
    "StreamEvent",
    "TextDelta",
    "ToolCallRecord",
    "ToolCompleted",
    "ToolProgress",
    "ToolStarted",
    "ToolStatus",
    "ToolType",
    "create_adapter",
]
