"""Mock provider adapter for testing and local development."""

import asyncio
import contextlib
from collections.abc import AsyncIterator, Sequence
from typing import Any

from parley_core.config import ProviderConfig
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
from parley_core.streaming.registry import CancellationHandle


class MockAdapter(BaseAdapter):
    """Adapter that echoes the last user turn word by word.

    ``provider_specific`` options:
        delay: seconds to wait between words (abort is honored while waiting)
        fail_after: number of words after which the stream errors
        search: emit one simulated web search before the text, using the
            same native events as the Responses API

    Used for testing without network access.
    """

    provider_kind = "mock"

    def validate_config(self, config: ProviderConfig) -> bool:
        return config.provider == self.provider_kind and bool(config.api_key and config.model)

    @staticmethod
    def _native_search(query: str) -> list[dict[str, Any]]:
        item_id = "ws_mock"
        return [
            {
                "type": "response.output_item.added",
                "output_index": 0,
                "item": {"id": item_id, "type": "web_search_call", "status": "in_progress"},
            },
            {"type": "response.web_search_call.in_progress", "item_id": item_id},
            {"type": "response.web_search_call.searching", "item_id": item_id},
            {"type": "response.web_search_call.completed", "item_id": item_id},
            {
                "type": "response.output_item.done",
                "output_index": 0,
                "item": {
                    "id": item_id,
                    "type": "web_search_call",
                    "status": "completed",
                    "action": {"type": "search", "query": query},
                },
            },
        ]

    async def _pause(self, delay: float, handle: CancellationHandle) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(handle.wait(), timeout=delay)

    async def events(
        self,
        messages: Sequence[ChatMessage],
        config: ProviderConfig,
        handle: CancellationHandle,
        tools: frozenset[ToolType] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        if not self.validate_config(config):
            yield Error("Invalid mock configuration")
            return

        options = config.provider_specific
        delay = float(options.get("delay", 0))
        fail_after = options.get("fail_after")

        prompt = next((m.content for m in reversed(messages) if m.role == "user"), "")

        if options.get("search") or (tools and ToolType.WEB_SEARCH in tools):
            tracker = ToolCallTracker()
            for native in self._native_search(prompt):
                await self._pause(delay, handle)
                if handle.aborted:
                    return
                event = tracker.process(native)
                if event is not None:
                    yield event

        words = f"Echo: {prompt}".split()
        for index, word in enumerate(words):
            await self._pause(delay, handle)
            if handle.aborted:
                return
            if fail_after is not None and index >= int(fail_after):
                yield Error("Mock API error: 500 simulated failure")
                return
            yield TextDelta(word + " ")

        if handle.aborted:
            return
        yield Done()
