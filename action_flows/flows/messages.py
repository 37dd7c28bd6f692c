"""Per-task chat messages and the unread counts derived from them."""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any, Dict, Iterable, Mapping
from uuid import uuid4

from .status import iter_tasks


def build_message(
    text: str,
    *,
    sender_id: str,
    sender_name: str,
    now: datetime | None = None,
) -> Dict[str, Any]:
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Message text is required.")
    timestamp = (now or datetime.now(UTC)).isoformat()
    return {
        "id": str(uuid4()),
        "text": text.strip(),
        "sender_id": sender_id,
        "sender_name": sender_name,
        "timestamp": timestamp,
        "read": False,
    }


def _messages_of(task: Mapping[str, Any] | None) -> list[Any]:
    if not isinstance(task, Mapping):
        return []
    messages = task.get("messages")
    if not isinstance(messages, list):
        return []
    return [message for message in messages if isinstance(message, Mapping)]


def append_message(task: Mapping[str, Any], message: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *task* with *message* added to the end of its thread."""

    updated = copy.deepcopy(dict(task))
    messages = updated.get("messages")
    if not isinstance(messages, list):
        messages = []
    messages.append(dict(message))
    updated["messages"] = messages
    return updated


def mark_messages_read(task: Mapping[str, Any], reader_id: str) -> tuple[Dict[str, Any], int]:
    """Mark messages sent to *reader_id* as read.

    Returns the updated task copy and how many messages changed.
    """

    updated = copy.deepcopy(dict(task))
    changed = 0
    messages = updated.get("messages")
    if isinstance(messages, list):
        for message in messages:
            if isinstance(message, dict) and message.get("sender_id") != reader_id and not message.get("read"):
                message["read"] = True
                changed += 1
    return updated, changed


def iter_unread_messages(task: Mapping[str, Any] | None, user_id: str | None) -> Iterable[Mapping[str, Any]]:
    for message in _messages_of(task):
        if message.get("sender_id") != user_id and not message.get("read"):
            yield message


def count_unread_messages(task: Mapping[str, Any] | None, user_id: str | None) -> int:
    return sum(1 for _ in iter_unread_messages(task, user_id))


def has_unread_messages(task: Mapping[str, Any] | None, user_id: str | None) -> bool:
    if not user_id:
        return False
    return any(True for _ in iter_unread_messages(task, user_id))


def count_unread_messages_in_flow(flow: Any, user_id: str | None) -> int:
    return sum(count_unread_messages(task, user_id) for task in iter_tasks(flow))
