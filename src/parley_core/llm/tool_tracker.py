"""Tool-call lifecycle tracking for Responses-style streams.

A single built-in tool call arrives as several interleaved native events::

    response.output_item.added        (item.type == "web_search_call")
    response.web_search_call.in_progress
    response.web_search_call.searching
    response.web_search_call.completed    (bare notice, no detail)
    response.output_item.done         (item with action.query / queries)

The tracker folds them into one record per ``item_id`` and emits at most one
canonical event per native event.
"""

import time
from typing import Any

from parley_core.llm.base import (
    StreamEvent,
    ToolCallRecord,
    ToolCompleted,
    ToolProgress,
    ToolStarted,
    ToolStatus,
    ToolType,
)
from parley_core.observability import get_logger

logger = get_logger(__name__)

# Native output item type -> tool kind
ITEM_TYPES: dict[str, ToolType] = {
    "web_search_call": ToolType.WEB_SEARCH,
    "file_search_call": ToolType.FILE_SEARCH,
    "code_interpreter_call": ToolType.CODE_INTERPRETER,
}

# Progress event suffix -> status
PROGRESS_STATUSES: dict[str, ToolStatus] = {
    "in_progress": ToolStatus.IN_PROGRESS,
    "searching": ToolStatus.SEARCHING,
    "interpreting": ToolStatus.SEARCHING,
}

ITEM_ADDED = "response.output_item.added"
ITEM_DONE = "response.output_item.done"


def _event_prefix(item_type: str) -> str:
    return f"response.{item_type}."


def _extract_query(item: dict[str, Any]) -> str | None:
    """Pull the query text out of a finished tool item."""
    action = item.get("action")
    if isinstance(action, dict) and action.get("query"):
        return str(action["query"])
    queries = item.get("queries")
    if isinstance(queries, list) and queries:
        return ", ".join(str(q) for q in queries if q)
    if item.get("code"):
        return str(item["code"])
    return None


class ToolCallTracker:
    """State machine over tool-call events of one stream.

    Records are never removed; the tracker is discarded with its stream.
    ``timestamp`` on a record moves only when its status changes.
    """

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}
        self._announced: set[str] = set()

    def __len__(self) -> int:
        return len(self._records)

    def get(self, item_id: str) -> ToolCallRecord | None:
        return self._records.get(item_id)

    @staticmethod
    def handles(event_type: str) -> bool:
        """Whether a native event type belongs to the tool lifecycle."""
        if event_type in (ITEM_ADDED, ITEM_DONE):
            return True
        return any(event_type.startswith(_event_prefix(t)) for t in ITEM_TYPES)

    def process(self, event: dict[str, Any]) -> StreamEvent | None:
        """Fold one native event into the tracker.

        Returns:
            The canonical event to emit, or None when nothing is emitted
        """
        event_type = event.get("type", "")
        if event_type == ITEM_ADDED:
            return self._on_item_added(event)
        if event_type == ITEM_DONE:
            return self._on_item_done(event)

        for item_type in ITEM_TYPES:
            prefix = _event_prefix(item_type)
            if event_type.startswith(prefix):
                return self._on_status(event, event_type[len(prefix):])
        return None

    def _on_item_added(self, event: dict[str, Any]) -> StreamEvent | None:
        item = event.get("item") or {}
        tool_type = ITEM_TYPES.get(item.get("type", ""))
        item_id = item.get("id")
        if tool_type is None or not item_id:
            # Messages, reasoning and unsupported tools
            logger.debug("Ignoring output item", context={"item_type": item.get("type")})
            return None
        if item_id in self._records:
            return None

        record = ToolCallRecord(
            item_id=item_id,
            type=tool_type,
            status=ToolStatus.IN_PROGRESS,
            output_index=event.get("output_index"),
        )
        self._records[item_id] = record
        return ToolStarted(record.snapshot())

    def _on_status(self, event: dict[str, Any], suffix: str) -> StreamEvent | None:
        item_id = event.get("item_id")
        record = self._records.get(item_id) if item_id else None
        if record is None:
            logger.debug(
                "Dropping tool event for unknown item",
                context={"event_type": event.get("type"), "item_id": item_id},
            )
            return None

        if suffix == "completed":
            # Bare notice; the output_item.done event carries the detail
            self._advance(record, ToolStatus.COMPLETED)
            return None

        status = PROGRESS_STATUSES.get(suffix)
        if status is None or record.status.is_terminal:
            return None
        self._advance(record, status)
        return ToolProgress(record.snapshot())

    def _on_item_done(self, event: dict[str, Any]) -> StreamEvent | None:
        item = event.get("item") or {}
        item_id = item.get("id")
        record = self._records.get(item_id) if item_id else None
        if record is None or item_id in self._announced:
            return None

        failed = item.get("status") in ("failed", "incomplete")
        self._advance(record, ToolStatus.FAILED if failed else ToolStatus.COMPLETED, force=True)
        record.query = _extract_query(item)
        if record.output_index is None:
            record.output_index = event.get("output_index")
        self._announced.add(item_id)
        return ToolCompleted(record.snapshot())

    @staticmethod
    def _advance(record: ToolCallRecord, status: ToolStatus, force: bool = False) -> None:
        if status == record.status:
            return
        if not force and status.rank < record.status.rank:
            return
        record.status = status
        record.timestamp = time.time()
