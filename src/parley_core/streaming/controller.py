"""Streaming session controller.

Runs one request end to end: registers its cancellation handle, drives the
provider adapter, persists tool-call messages in event order and guarantees
at most one terminal event per request.

Two equivalent surfaces are offered:

- :meth:`StreamingSessionController.events`, an async iterator of canonical
  events ending in ``Done`` or ``Error`` (or nothing, when cancelled);
- :meth:`StreamingSessionController.stream_chat`, the fire-and-forget callback
  form built on top of it.
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from parley_core.config import ProviderConfig
from parley_core.exceptions import RequestInFlightError, UnknownProviderError
from parley_core.llm.base import (
    ChatMessage,
    Error,
    StreamCallbacks,
    StreamEvent,
    ToolCallRecord,
    ToolCompleted,
    ToolProgress,
    ToolStarted,
    ToolStatus,
    ToolType,
    is_terminal,
)
from parley_core.llm.factory import AdapterSet
from parley_core.observability import (
    RequestContext,
    Timer,
    emit_counter,
    emit_timer,
    get_logger,
)
from parley_core.protocols.message_store import MessageStore, MessageUpdate, NewMessage
from parley_core.streaming.registry import CancelResult, RequestRegistry

logger = get_logger(__name__)

TOOL_LABELS = {
    ToolType.WEB_SEARCH: "Web search",
    ToolType.FILE_SEARCH: "File search",
    ToolType.CODE_INTERPRETER: "Code interpreter",
}


@dataclass(frozen=True)
class StreamRequest:
    """One submitted stream. Immutable once created."""

    messages: tuple[ChatMessage, ...]
    config: ProviderConfig
    request_id: str
    tools: frozenset[ToolType] | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if self.tools is not None and not isinstance(self.tools, frozenset):
            object.__setattr__(self, "tools", frozenset(self.tools))

    @classmethod
    def create(
        cls,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        request_id: str,
        tools: Sequence[ToolType] | None = None,
        session_id: str | None = None,
    ) -> "StreamRequest":
        return cls(
            messages=tuple(messages),
            config=config,
            request_id=request_id,
            tools=frozenset(tools) if tools is not None else None,
            session_id=session_id,
        )


def describe_tool_call(record: ToolCallRecord) -> str:
    """Human-readable content for a persisted tool-call message."""
    label = TOOL_LABELS.get(record.type, record.type.value)
    if record.status == ToolStatus.FAILED:
        return f"{label} failed"
    if record.status == ToolStatus.COMPLETED:
        return f"{label} completed: {record.query}" if record.query else f"{label} completed"
    return f"{label} in progress"


class StreamingSessionController:
    """Orchestrates in-flight streams.

    Example:
        controller = StreamingSessionController(RequestRegistry(), store=store)
        controller.stream_chat(request, StreamCallbacks(on_chunk=print))
        ...
        controller.cancel_chat(request.request_id)
    """

    def __init__(
        self,
        registry: RequestRegistry,
        adapters: AdapterSet | None = None,
        store: MessageStore | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            registry: Registry shared with whoever may cancel requests
            adapters: Provider adapters (default adapters if omitted)
            store: Message store for tool-call messages; tool events are not
                persisted without one
        """
        self.registry = registry
        self.adapters = adapters or AdapterSet()
        self.store = store
        self._tasks: set[asyncio.Task[None]] = set()

    async def _persist_tool_event(
        self,
        request: StreamRequest,
        event: ToolStarted | ToolProgress | ToolCompleted,
        tool_messages: dict[str, str],
    ) -> None:
        """Mirror a tool event into the store. Failures are logged only."""
        if self.store is None or request.session_id is None:
            return

        record = event.record
        context = {"request_id": request.request_id, "item_id": record.item_id}
        try:
            if isinstance(event, ToolStarted):
                tool_messages[record.item_id] = await self.store.create_message(
                    NewMessage(
                        session_id=request.session_id,
                        role="tool",
                        content=describe_tool_call(record),
                        status="pending",
                        content_type="tool_call",
                        tool_type=record.type.value,
                        tool_status=record.status.value,
                        tool_item_id=record.item_id,
                        tool_output_index=record.output_index,
                    )
                )
                return

            message_id = tool_messages.get(record.item_id)
            if message_id is None:
                logger.debug("No persisted message for tool call", context=context)
                return

            if isinstance(event, ToolProgress):
                update = MessageUpdate(tool_status=record.status.value)
            else:
                update = MessageUpdate(
                    content=describe_tool_call(record),
                    status="error" if record.status == ToolStatus.FAILED else "sent",
                    tool_status=record.status.value,
                    tool_query=record.query,
                )
            await self.store.update_message(message_id, update)
        except Exception as e:
            logger.error("Failed to persist tool call message", context=context, error=e)

    async def events(
        self,
        request: StreamRequest,
        tools: Sequence[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream canonical events for ``request``.

        Yields zero or more non-terminal events followed by exactly one
        ``Done`` or ``Error``, or by nothing if the request was cancelled.
        Closing the iterator early aborts the request.

        Args:
            request: The request to run
            tools: Tools to enable, overriding ``request.tools``
        """
        enabled = frozenset(tools) if tools is not None else request.tools
        context = {"request_id": request.request_id, "provider": request.config.provider}

        try:
            handle = self.registry.register(request.request_id)
        except RequestInFlightError as e:
            logger.warning("Rejected duplicate request", context=context)
            emit_counter("stream.failed")
            yield Error(str(e), cause=e)
            return

        try:
            adapter = self.adapters.get(request.config.provider)
        except UnknownProviderError as e:
            self.registry.release(request.request_id, handle)
            logger.error("No adapter for provider", context=context, error=e)
            emit_counter("stream.failed")
            yield Error(str(e), cause=e)
            return

        tool_messages: dict[str, str] = {}
        started: set[str] = set()
        terminal: StreamEvent | None = None
        logger.info("Stream started", context={**context, "messages": len(request.messages)})
        emit_counter("stream.started")

        with Timer() as timer:
            try:
                async with contextlib.aclosing(
                    adapter.events(request.messages, request.config, handle, enabled)
                ) as stream:
                    async for event in stream:
                        if is_terminal(event):
                            terminal = event
                            break
                        if handle.aborted:
                            break
                        if isinstance(event, (ToolStarted, ToolProgress, ToolCompleted)):
                            item_id = event.record.item_id
                            if isinstance(event, ToolStarted):
                                started.add(item_id)
                            elif item_id not in started:
                                logger.debug(
                                    "Dropping tool event for unstarted item",
                                    context={**context, "item_id": item_id},
                                )
                                continue
                            await self._persist_tool_event(request, event, tool_messages)
                            if handle.aborted:
                                break
                        yield event
                if terminal is None and not handle.aborted:
                    terminal = Error("Stream ended without a result")
            except Exception as e:
                if not handle.aborted:
                    logger.error("Stream failed unexpectedly", context=context, error=e)
                    terminal = Error(f"Stream failed: {e}", cause=e)
            finally:
                if terminal is None:
                    # Cancelled, or the consumer stopped iterating
                    handle.abort("closed")
                self.registry.release(request.request_id, handle)

        emit_timer("stream.duration", timer.duration_ms)
        if terminal is None:
            logger.info("Stream cancelled", context=context, duration_ms=timer.duration_ms)
            emit_counter("stream.cancelled")
            return

        if isinstance(terminal, Error):
            logger.warning(
                "Stream finished with error",
                context={**context, "error": terminal.message},
                duration_ms=timer.duration_ms,
            )
            emit_counter("stream.failed")
        else:
            logger.info("Stream completed", context=context, duration_ms=timer.duration_ms)
            emit_counter("stream.completed")
        yield terminal

    async def run(
        self,
        request: StreamRequest,
        callbacks: StreamCallbacks,
        tools: Sequence[ToolType] | None = None,
    ) -> None:
        """Run a request to completion, delivering events to ``callbacks``."""
        async with RequestContext(
            request_id=request.request_id,
            session_id=request.session_id,
            provider=request.config.provider,
        ):
            async with contextlib.aclosing(self.events(request, tools)) as events:
                async for event in events:
                    await callbacks.dispatch(event)

    def stream_chat(
        self,
        request: StreamRequest,
        callbacks: StreamCallbacks,
        tools: Sequence[ToolType] | None = None,
    ) -> "asyncio.Task[None]":
        """Start a request in the background.

        Completion is reported through ``callbacks`` only; the returned task
        is for callers that want to await it (tests, shutdown).
        """
        task = asyncio.create_task(
            self.run(request, callbacks, tools),
            name=f"stream-{request.request_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Stream callback raised", context={"task": task.get_name()}, error=error)

    def cancel_chat(self, request_id: str) -> CancelResult:
        """Cancel an in-flight request. Unknown IDs report ``found=False``."""
        return self.registry.cancel(request_id)

    async def aclose(self) -> None:
        """Abort every outstanding stream and wait for their tasks."""
        self.registry.shutdown()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
