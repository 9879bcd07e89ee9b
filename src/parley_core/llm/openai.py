"""OpenAI-compatible provider adapter.

Speaks two wire dialects of the same provider:

- ``chat_completions``: ``POST /chat/completions`` with ``messages``; text only,
  no built-in tools.
- ``responses``: ``POST /responses`` with ``input``; text plus built-in tool
  calls (web search, file search, code interpreter).

The dialect is picked once per call from the config alone.
"""

import contextlib
from collections.abc import AsyncIterator, Sequence
from enum import Enum
from typing import Any

from parley_core.config import ProviderConfig, StreamingConfig
from parley_core.exceptions import ProviderError
from parley_core.llm.base import (
    BaseAdapter,
    ChatMessage,
    Done,
    Error,
    StreamEvent,
    TextDelta,
    ToolType,
)
from parley_core.llm.tool_tracker import ToolCallTracker
from parley_core.llm.transport import PreparedRequest, TransportStreamReader
from parley_core.observability import get_logger
from parley_core.streaming.registry import CancellationHandle

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

# Roles the upstream API accepts as conversation input
CONVERSATION_ROLES = frozenset({"system", "user", "assistant"})

# Only user turns may carry non-text content; attachments on any other role
# are dropped and the turn is sent as plain text.
MULTIMODAL_ROLES = frozenset({"user"})


class Dialect(str, Enum):
    CHAT_COMPLETIONS = "chat_completions"
    RESPONSES = "responses"


class OpenAIAdapter(BaseAdapter):
    """Adapter for the OpenAI API and compatible endpoints.

    Example:
        adapter = OpenAIAdapter()
        handle = registry.register("req-1")
        async for event in adapter.events(messages, config, handle):
            ...
    """

    provider_kind = "openai"

    def __init__(
        self,
        reader: TransportStreamReader | None = None,
        streaming: StreamingConfig | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            reader: Transport reader (a default httpx-backed one if omitted)
            streaming: Dialect selection and default tool settings
        """
        self.reader = reader or TransportStreamReader()
        self.streaming = streaming or StreamingConfig()

    def validate_config(self, config: ProviderConfig) -> bool:
        """Validate an OpenAI configuration."""
        if config.provider != self.provider_kind:
            logger.warning(
                "OpenAI provider validation failed: provider is not openai",
                context={"provider": config.provider},
            )
            return False
        if not config.api_key or not config.model:
            logger.warning(
                "OpenAI provider validation failed: missing api_key or model",
                context={"has_api_key": bool(config.api_key), "has_model": bool(config.model)},
            )
            return False
        api = config.provider_specific.get("api")
        if api and api not in {d.value for d in Dialect}:
            logger.warning(
                "OpenAI provider validation failed: unknown api dialect",
                context={"api": api},
            )
            return False
        return True

    def select_dialect(self, config: ProviderConfig) -> Dialect:
        """Pick the wire dialect for a config.

        ``provider_specific["api"]`` wins when set; otherwise the model name
        prefix decides.
        """
        explicit = config.provider_specific.get("api")
        if explicit:
            return Dialect(explicit)
        model = config.model.lower()
        if any(model.startswith(prefix) for prefix in self.streaming.responses_model_prefixes):
            return Dialect.RESPONSES
        return Dialect.CHAT_COMPLETIONS

    # -- payload construction ------------------------------------------------

    @staticmethod
    def conversation_turns(messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Drop turns that exist only for display, such as tool results."""
        return [m for m in messages if m.role in CONVERSATION_ROLES]

    def build_chat_messages(self, messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
        """Convert turns to the ``chat_completions`` message format."""
        result: list[dict[str, Any]] = []
        for msg in self.conversation_turns(messages):
            images = [a for a in msg.attachments if a.type == "image"]
            if images and msg.role in MULTIMODAL_ROLES:
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"type": "text", "text": msg.content})
                for image in images:
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": image.data_url, "detail": "auto"},
                    })
                result.append({"role": msg.role, "content": parts})
            else:
                if msg.attachments:
                    logger.debug(
                        "Sending turn without attachments",
                        context={"role": msg.role, "attachments": len(msg.attachments)},
                    )
                result.append({"role": msg.role, "content": msg.content})
        return result

    def build_responses_input(self, messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
        """Convert turns to the ``responses`` input format."""
        result: list[dict[str, Any]] = []
        for msg in self.conversation_turns(messages):
            if msg.attachments and msg.role in MULTIMODAL_ROLES:
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"type": "input_text", "text": msg.content})
                for attachment in msg.attachments:
                    if attachment.type == "image":
                        parts.append({"type": "input_image", "image_url": attachment.data_url})
                    else:
                        parts.append({
                            "type": "input_file",
                            "filename": attachment.name or "attachment",
                            "file_data": attachment.data_url,
                        })
                result.append({"role": msg.role, "content": parts})
            else:
                if msg.attachments:
                    logger.debug(
                        "Sending turn without attachments",
                        context={"role": msg.role, "attachments": len(msg.attachments)},
                    )
                result.append({"role": msg.role, "content": msg.content})
        return result

    def default_tools(self, config: ProviderConfig) -> set[ToolType]:
        """Tools enabled for a model regardless of what the caller asked."""
        model = config.model.lower()
        if any(model.startswith(prefix) for prefix in self.streaming.web_search_model_prefixes):
            return {ToolType.WEB_SEARCH}
        return set()

    def resolve_tools(
        self,
        config: ProviderConfig,
        requested: frozenset[ToolType] | None,
    ) -> list[dict[str, Any]]:
        """Merge default and requested tools into ``responses`` tool specs.

        Tools whose required configuration is missing are dropped.
        """
        enabled = self.default_tools(config) | set(requested or ())
        specs: list[dict[str, Any]] = []
        for tool in sorted(enabled, key=lambda t: t.value):
            if tool == ToolType.WEB_SEARCH:
                specs.append({"type": "web_search"})
            elif tool == ToolType.FILE_SEARCH:
                store_ids = config.provider_specific.get("vector_store_ids")
                if not store_ids:
                    logger.warning(
                        "Dropping file_search tool: no vector_store_ids configured",
                        context={"model": config.model},
                    )
                    continue
                specs.append({"type": "file_search", "vector_store_ids": list(store_ids)})
            elif tool == ToolType.CODE_INTERPRETER:
                container = config.provider_specific.get("container") or {"type": "auto"}
                specs.append({"type": "code_interpreter", "container": container})
        return specs

    def prepare_request(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        dialect: Dialect,
        tools: frozenset[ToolType] | None = None,
    ) -> PreparedRequest:
        """Build the outbound request for one stream.

        Optional parameters are only sent when explicitly set, since some
        models reject them.
        """
        base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        headers = {"Authorization": f"Bearer {config.api_key}"}
        organization = config.provider_specific.get("organization")
        if organization:
            headers["OpenAI-Organization"] = organization

        body: dict[str, Any] = {"model": config.model, "stream": True}
        if config.temperature is not None:
            body["temperature"] = config.temperature

        if dialect == Dialect.RESPONSES:
            body["input"] = self.build_responses_input(messages)
            if config.max_tokens is not None:
                body["max_output_tokens"] = config.max_tokens
            tool_specs = self.resolve_tools(config, tools)
            if tool_specs:
                body["tools"] = tool_specs
            url = f"{base_url}/responses"
        else:
            body["messages"] = self.build_chat_messages(messages)
            if config.max_tokens is not None:
                body["max_completion_tokens"] = config.max_tokens
            if tools:
                logger.warning(
                    "Tools requested on a dialect without tool support",
                    context={"model": config.model, "tools": sorted(t.value for t in tools)},
                )
            url = f"{base_url}/chat/completions"

        return PreparedRequest(url=url, body=body, headers=headers)

    # -- event translation ---------------------------------------------------

    @staticmethod
    def _translate_chat(native: dict[str, Any]) -> StreamEvent | None:
        error = native.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(f"stream error: {message}")

        choices = native.get("choices") or []
        if not choices:
            return None
        content = (choices[0].get("delta") or {}).get("content")
        if content:
            return TextDelta(content)
        return None

    @staticmethod
    def _translate_responses(
        native: dict[str, Any],
        tracker: ToolCallTracker,
    ) -> StreamEvent | None:
        event_type = native.get("type", "")

        if event_type == "response.output_text.delta":
            delta = native.get("delta")
            return TextDelta(delta) if delta else None

        if tracker.handles(event_type):
            return tracker.process(native)

        if event_type == "error":
            raise ProviderError(f"stream error: {native.get('message') or native.get('code')}")

        if event_type in ("response.failed", "response.incomplete"):
            response = native.get("response") or {}
            error = response.get("error") or {}
            details = response.get("incomplete_details") or {}
            reason = error.get("message") or details.get("reason") or event_type
            raise ProviderError(f"response {event_type.rsplit('.', 1)[-1]}: {reason}")

        return None

    async def events(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        handle: CancellationHandle,
        tools: frozenset[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream canonical events for one request."""
        if not self.validate_config(config):
            logger.error("OpenAI stream failed: invalid configuration")
            yield Error("Invalid OpenAI configuration")
            return

        dialect = self.select_dialect(config)
        request = self.prepare_request(messages, config, dialect, tools)
        tracker = ToolCallTracker()
        chunk_count = 0

        logger.info(
            "Starting OpenAI stream",
            context={
                "model": config.model,
                "dialect": dialect.value,
                "base_url": config.base_url or "default",
                "messages": len(messages),
                "tools": [t["type"] for t in request.body.get("tools", [])],
            },
        )

        try:
            async with contextlib.aclosing(self.reader.events(request, handle)) as stream:
                async for native in stream:
                    if handle.aborted:
                        break
                    if dialect == Dialect.RESPONSES:
                        event = self._translate_responses(native, tracker)
                    else:
                        event = self._translate_chat(native)
                    if event is None:
                        continue
                    if isinstance(event, TextDelta):
                        chunk_count += 1
                    yield event
                    if handle.aborted:
                        break
        except Exception as e:
            if handle.aborted:
                logger.info("OpenAI stream aborted")
                return
            logger.error(
                "OpenAI API error occurred",
                context={"model": config.model, "dialect": dialect.value},
                error=e,
            )
            yield Error(f"OpenAI API error: {e}", cause=e)
            return

        if handle.aborted:
            logger.info("OpenAI stream cancelled by user", context={"chunks": chunk_count})
            return

        logger.info(
            "OpenAI stream completed",
            context={"model": config.model, "chunks": chunk_count, "tool_calls": len(tracker)},
        )
        yield Done()
