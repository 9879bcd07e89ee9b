"""Helpers shared by message store backends and the chat client."""

import re

from parley_core.llm.base import ChatMessage
from parley_core.protocols.message_store import MessageRecord

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 30

_NEWLINES = re.compile(r"\n+")


def generate_title(content: str) -> str:
    """Derive a session title from its first user message."""
    trimmed = _NEWLINES.sub(" ", content.strip())
    if not trimmed:
        return DEFAULT_TITLE
    if len(trimmed) <= TITLE_MAX_LENGTH:
        return trimmed
    return trimmed[:TITLE_MAX_LENGTH] + "..."


def history_from_records(records: list[MessageRecord]) -> list[ChatMessage]:
    """Rebuild model input from persisted rows.

    Tool-call rows are kept as ``tool`` turns so adapters can filter them;
    placeholders that never finished and failed replies are skipped.
    """
    turns: list[ChatMessage] = []
    for record in records:
        if record.status in ("pending", "error"):
            continue
        if record.content_type == "tool_call":
            turns.append(ChatMessage(role="tool", content=record.content))
            continue
        if record.role not in ("system", "user", "assistant"):
            continue
        turns.append(ChatMessage(role=record.role, content=record.content))  # type: ignore[arg-type]
    return turns
