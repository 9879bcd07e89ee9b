"""Base types for provider adapters and the canonical stream events."""

import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Protocol, Union

from parley_core.config import ProviderConfig

if TYPE_CHECKING:
    from parley_core.streaming.registry import CancellationHandle


class ToolType(str, Enum):
    """Built-in provider tools the core knows how to track."""

    WEB_SEARCH = "web_search"
    FILE_SEARCH = "file_search"
    CODE_INTERPRETER = "code_interpreter"


class ToolStatus(str, Enum):
    """Lifecycle status of a tool call. Only ever advances."""

    IN_PROGRESS = "in_progress"
    SEARCHING = "searching"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.FAILED)


_STATUS_RANK = {
    ToolStatus.IN_PROGRESS: 0,
    ToolStatus.SEARCHING: 1,
    ToolStatus.COMPLETED: 2,
    ToolStatus.FAILED: 2,
}


@dataclass(frozen=True)
class Attachment:
    """A file attached to a turn. ``data`` is base64 encoded."""

    type: Literal["image", "file"]
    mime_type: str
    data: str
    name: str | None = None

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class ChatMessage:
    """One conversation turn."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str
    attachments: tuple[Attachment, ...] = ()


@dataclass
class ToolCallRecord:
    """State of one provider-side tool call, keyed by ``item_id``."""

    item_id: str
    type: ToolType
    status: ToolStatus = ToolStatus.IN_PROGRESS
    query: str | None = None
    output_index: int | None = None
    timestamp: float = field(default_factory=time.time)

    def snapshot(self) -> "ToolCallRecord":
        """Copy handed to callers so later updates never mutate what they saw."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "item_id": self.item_id,
            "type": self.type.value,
            "status": self.status.value,
            "query": self.query,
            "output_index": self.output_index,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TextDelta:
    text: str
    type: Literal["text_delta"] = "text_delta"


@dataclass(frozen=True)
class ToolStarted:
    record: ToolCallRecord
    type: Literal["tool_started"] = "tool_started"


@dataclass(frozen=True)
class ToolProgress:
    record: ToolCallRecord
    type: Literal["tool_progress"] = "tool_progress"


@dataclass(frozen=True)
class ToolCompleted:
    """Completion of a tool call; ``record.status`` is completed or failed."""

    record: ToolCallRecord
    type: Literal["tool_completed"] = "tool_completed"


@dataclass(frozen=True)
class Done:
    type: Literal["done"] = "done"


@dataclass(frozen=True)
class Error:
    message: str
    cause: BaseException | None = field(default=None, compare=False)
    type: Literal["error"] = "error"


StreamEvent = Union[TextDelta, ToolStarted, ToolProgress, ToolCompleted, Done, Error]

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})


def is_terminal(event: StreamEvent) -> bool:
    """Whether ``event`` ends a stream."""
    return event.type in TERMINAL_EVENT_TYPES


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """Wire representation used by the HTTP surface."""
    if isinstance(event, TextDelta):
        return {"type": "chunk", "content": event.text}
    if isinstance(event, ToolStarted):
        return {"type": "tool_call_start", "record": event.record.to_dict()}
    if isinstance(event, ToolProgress):
        return {"type": "tool_call_progress", "record": event.record.to_dict()}
    if isinstance(event, ToolCompleted):
        return {"type": "tool_call_complete", "record": event.record.to_dict()}
    if isinstance(event, Done):
        return {"type": "done"}
    return {"type": "error", "error": event.message}


Callback = Callable[..., Union[None, Awaitable[None]]]


async def _invoke(callback: Callback | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class StreamCallbacks:
    """Callback set for the callback-style streaming API.

    Any callback may be a plain function or a coroutine function; unset
    callbacks are skipped.
    """

    on_chunk: Callback | None = None
    on_tool_call_start: Callback | None = None
    on_tool_call_progress: Callback | None = None
    on_tool_call_complete: Callback | None = None
    on_done: Callback | None = None
    on_error: Callback | None = None

    async def dispatch(self, event: StreamEvent) -> None:
        """Deliver one canonical event to the matching callback."""
        if isinstance(event, TextDelta):
            await _invoke(self.on_chunk, event.text)
        elif isinstance(event, ToolStarted):
            await _invoke(self.on_tool_call_start, event.record)
        elif isinstance(event, ToolProgress):
            await _invoke(self.on_tool_call_progress, event.record)
        elif isinstance(event, ToolCompleted):
            await _invoke(self.on_tool_call_complete, event.record)
        elif isinstance(event, Done):
            await _invoke(self.on_done)
        elif isinstance(event, Error):
            await _invoke(self.on_error, event.message)


class ProviderAdapter(Protocol):
    """Capability interface every provider variant satisfies."""

    provider_kind: str

    def validate_config(self, config: ProviderConfig) -> bool:
        """Check provider kind and required fields. Pure, no I/O."""
        ...

    def events(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        handle: "CancellationHandle",
        tools: frozenset[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream canonical events.

        Ends with exactly one Done or Error, or with neither when ``handle``
        was aborted. Never raises for upstream failures.
        """
        ...

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        callbacks: StreamCallbacks,
        handle: "CancellationHandle",
        tools: frozenset[ToolType] | None = None,
    ) -> None:
        """Callback-style form of :meth:`events`."""
        ...


class BaseAdapter:
    """Shared callback driver for adapters that implement ``events``."""

    provider_kind: str = ""

    def validate_config(self, config: ProviderConfig) -> bool:
        raise NotImplementedError

    def events(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        handle: "CancellationHandle",
        tools: frozenset[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        callbacks: StreamCallbacks,
        handle: "CancellationHandle",
        tools: frozenset[ToolType] | None = None,
    ) -> None:
        async for event in self.events(messages, config, handle, tools):
            await callbacks.dispatch(event)
