"""Parley Core - Streaming response orchestration for LLM chat clients."""

from parley_core.client import ChatClient
from parley_core.config import Config, ProviderConfig
from parley_core.llm.base import (
    Attachment,
    ChatMessage,
    Done,
    Error,
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
from parley_core.observability import (
    LogLevel,
    RequestContext,
    StructuredLogger,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)
from parley_core.streaming.controller import StreamingSessionController, StreamRequest
from parley_core.streaming.registry import CancellationHandle, CancelResult, RequestRegistry

__version__ = "0.1.0"
__all__ = [
    # Core
    "ChatClient",
    "Config",
    "ProviderConfig",
    # Streaming
    "CancelResult",
    "CancellationHandle",
    "RequestRegistry",
    "StreamRequest",
    "StreamingSessionController",
    # Events
    "Attachment",
    "ChatMessage",
    "Done",
    "Error",
    "StreamCallbacks",
    "StreamEvent",
    "TextDelta",
    "ToolCallRecord",
    "ToolCompleted",
    "ToolProgress",
    "ToolStarted",
    "ToolStatus",
    "ToolType",
    # Observability
    "LogLevel",
    "RequestContext",
    "StructuredLogger",
    "Timer",
    "configure_logging",
    "emit_counter",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
