"""Conversation history helpers."""

from parley_core.sessions.history import DEFAULT_TITLE, generate_title, history_from_records

__all__ = [
    "DEFAULT_TITLE",
    "generate_title",
    "history_from_records",
]
