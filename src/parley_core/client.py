"""Chat client facade for parley-core."""

import contextlib
import uuid
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

import httpx

from parley_core.config import Config, ProviderConfig
from parley_core.exceptions import RequestInFlightError, SessionNotFoundError
from parley_core.llm.base import (
    Attachment,
    ChatMessage,
    Done,
    Error,
    StreamCallbacks,
    StreamEvent,
    TextDelta,
    ToolType,
)
from parley_core.llm.factory import AdapterSet
from parley_core.llm.transport import TransportStreamReader
from parley_core.observability import configure_logging, get_logger
from parley_core.plugins import create_message_store
from parley_core.protocols import MessageStore, MessageUpdate, NewMessage
from parley_core.sessions.history import history_from_records
from parley_core.streaming.controller import StreamingSessionController, StreamRequest
from parley_core.streaming.registry import CancelResult, RequestRegistry

logger = get_logger(__name__)


class ChatClient:
    """Main entry point: streams model replies into persisted sessions.

    Example usage:
        async with ChatClient.from_config("config.yaml") as client:
            session = await client.store.create_session()
            async for event in client.send_message(session.id, "Hello"):
                if event.type == "text_delta":
                    print(event.text, end="")

        # Or start the HTTP server
        ChatClient.from_config("config.yaml").serve()
    """

    def __init__(
        self,
        config: Config,
        store: MessageStore | None = None,
        registry: RequestRegistry | None = None,
        adapters: AdapterSet | None = None,
    ) -> None:
        """Initialize the client with configuration.

        Use `ChatClient.from_config()` for convenience.
        """
        self.config = config
        self.store = store or create_message_store(
            config.storage.backend,
            path=config.storage.path,
        )
        self.registry = registry or RequestRegistry()
        if adapters is None:
            timeout = httpx.Timeout(
                config.streaming.connect_timeout_seconds,
                read=config.streaming.read_timeout_seconds,
            )
            adapters = AdapterSet(
                reader=TransportStreamReader(timeout=timeout),
                streaming=config.streaming,
            )
        self.controller = StreamingSessionController(self.registry, adapters, self.store)

    @classmethod
    def from_config(cls, path: str | Path) -> "ChatClient":
        """Create a client from a YAML or JSON configuration file."""
        config = Config.from_file(path)
        configure_logging(config.logging.level, config.logging.format)
        return cls(config)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "ChatClient":
        """Create a client from a configuration dictionary."""
        return cls(Config.from_dict(config_dict))

    def stream_chat(
        self,
        request: StreamRequest,
        callbacks: StreamCallbacks,
        tools: Sequence[ToolType] | None = None,
    ) -> Any:
        """Start a stream in the background; see StreamingSessionController."""
        return self.controller.stream_chat(request, callbacks, tools)

    def cancel_chat(self, request_id: str) -> CancelResult:
        """Cancel an in-flight stream."""
        return self.controller.cancel_chat(request_id)

    async def send_message(
        self,
        session_id: str,
        content: str,
        attachments: Sequence[Attachment] = (),
        config: ProviderConfig | None = None,
        request_id: str | None = None,
        tools: Sequence[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a user message and stream the assistant reply.

        The user turn and an assistant placeholder are persisted before the
        stream opens; the placeholder receives the streamed text when the
        stream ends (status ``sent`` on completion or cancellation, ``error``
        on failure).

        Args:
            session_id: Existing session ID
            content: User message text
            attachments: Attachments for this turn
            config: Provider config (defaults to ``config.llm``)
            request_id: ID used to cancel the stream (generated if omitted)
            tools: Tools to enable

        Yields:
            Canonical stream events

        Raises:
            SessionNotFoundError: If the session does not exist
            RequestInFlightError: If ``request_id`` is already streaming;
                nothing is persisted in that case
        """
        request_id = request_id or f"req-{uuid.uuid4().hex[:12]}"
        if not await self.store.session_exists(session_id):
            raise SessionNotFoundError(f"Session not found: {session_id}")
        if request_id in self.registry:
            raise RequestInFlightError(f"Request already in flight: {request_id}")

        history = history_from_records(await self.store.list_messages(session_id))
        await self.store.create_message(
            NewMessage(session_id=session_id, role="user", content=content)
        )
        assistant_id = await self.store.create_message(
            NewMessage(session_id=session_id, role="assistant", content="", status="pending")
        )

        request = StreamRequest.create(
            messages=[*history, ChatMessage(role="user", content=content, attachments=tuple(attachments))],
            config=config or self.config.llm,
            request_id=request_id,
            tools=tools,
            session_id=session_id,
        )

        parts: list[str] = []
        terminal: StreamEvent | None = None
        try:
            async with contextlib.aclosing(self.controller.events(request)) as events:
                async for event in events:
                    if isinstance(event, TextDelta):
                        parts.append(event.text)
                    elif isinstance(event, (Done, Error)):
                        terminal = event
                    yield event
        finally:
            await self._finish_reply(assistant_id, "".join(parts), terminal)

    async def _finish_reply(
        self,
        message_id: str,
        text: str,
        terminal: StreamEvent | None,
    ) -> None:
        if isinstance(terminal, Error):
            update = MessageUpdate(content=text or terminal.message, status="error")
        else:
            # Completed, or cancelled with a partial reply
            update = MessageUpdate(content=text, status="sent")
        try:
            await self.store.update_message(message_id, update)
        except Exception as e:
            logger.error("Failed to save assistant reply", context={"message_id": message_id}, error=e)

    def serve(
        self,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        """Start the HTTP server.

        Args:
            host: Host to bind to (defaults to config value)
            port: Port to bind to (defaults to config value)
        """
        import uvicorn

        from parley_core.server.app import create_app

        app = create_app(self)
        uvicorn.run(
            app,
            host=host or self.config.server.host,
            port=port or self.config.server.port,
        )

    async def aclose(self) -> None:
        """Abort outstanding streams and close the store."""
        await self.controller.aclose()
        await self.store.close()

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
