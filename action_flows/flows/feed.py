"""Notification feed derived from a user's flows, plus dismissal state."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Iterable, List, Mapping, MutableMapping

import structlog

from .messages import iter_unread_messages
from .status import get_field, is_task_completed, iter_sections, section_tasks, task_needs_attention

logger = structlog.get_logger(__name__)

KIND_REFUSED = "task_refused"
KIND_MESSAGE = "message"
KIND_DEADLINE = "deadline"

DISMISSED_KEY = "dismissed_messages"


@dataclass(frozen=True)
class FeedItem:
    id: str
    kind: str
    flow_id: str | None
    flow_title: str
    section_id: str | None
    task_id: str | None
    task_title: str
    message_id: str | None = None
    deadline: date | None = None


def parse_deadline(value: Any) -> date | None:
    """Return the calendar date of a deadline stored as text or a date."""

    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def is_deadline_approaching(task: Any, *, today: date, warning_days: int) -> bool:
    """Return True for incomplete tasks due after *today* and within the window."""

    if is_task_completed(task):
        return False
    deadline = parse_deadline(get_field(task, "deadline"))
    if deadline is None:
        return False
    return today < deadline <= today + timedelta(days=warning_days)


def has_approaching_deadline(flow: Any, *, today: date, warning_days: int) -> bool:
    return any(
        is_deadline_approaching(task, today=today, warning_days=warning_days)
        for section in iter_sections(flow)
        for task in section_tasks(section)
    )


def build_feed(
    flows: Iterable[Any],
    user_id: str,
    *,
    today: date,
    warning_days: int,
    dismissed: Iterable[str] = (),
) -> List[FeedItem]:
    """Collect refusal, unread message and deadline notices for *user_id*."""

    dismissed_ids = set(dismissed)
    refused: List[FeedItem] = []
    messages: List[FeedItem] = []
    deadlines: List[FeedItem] = []

    for flow in flows:
        flow_id = get_field(flow, "id")
        flow_title = get_field(flow, "title") or "Untitled Flow"
        for section in iter_sections(flow):
            section_id = get_field(section, "id")
            for task in section_tasks(section):
                task_id = get_field(task, "id")
                common = {
                    "flow_id": flow_id,
                    "flow_title": flow_title,
                    "section_id": section_id,
                    "task_id": task_id,
                    "task_title": get_field(task, "title") or "Untitled Task",
                }

                if task_needs_attention(task):
                    refused.append(FeedItem(id=f"{KIND_REFUSED}:{flow_id}:{task_id}", kind=KIND_REFUSED, **common))

                if isinstance(task, Mapping):
                    for message in iter_unread_messages(task, user_id):
                        message_id = message.get("id")
                        text = message.get("text")
                        if message_id in dismissed_ids or message.get("dismissed"):
                            continue
                        if not isinstance(text, str) or not text:
                            continue
                        messages.append(
                            FeedItem(
                                id=f"{KIND_MESSAGE}:{flow_id}:{task_id}:{message_id}",
                                kind=KIND_MESSAGE,
                                message_id=message_id,
                                **common,
                            )
                        )

                if is_deadline_approaching(task, today=today, warning_days=warning_days):
                    deadlines.append(
                        FeedItem(
                            id=f"{KIND_DEADLINE}:{flow_id}:{task_id}",
                            kind=KIND_DEADLINE,
                            deadline=parse_deadline(get_field(task, "deadline")),
                            **common,
                        )
                    )

    return refused + messages + deadlines


def _decode_dismissed(raw: str | None, user_id: str) -> set[str]:
    if not raw:
        return set()
    try:
        values = json.loads(raw)
    except (ValueError, RecursionError):
        logger.warning("dismissed_messages_invalid", user_id=user_id)
        return set()
    if not isinstance(values, list):
        return set()
    return {str(value) for value in values if value}


def _encode_dismissed(values: set[str]) -> str:
    return json.dumps(sorted(values))


class DismissalState:
    """Message ids one user has dismissed from their notification feed.

    The set lives on an explicit object owned by the caller's request and is
    written to a key/value *store* after every change, so it survives
    restarts without any process-wide registry. Stores that offer
    ``merge(key, combine)`` (see ``PreferenceStore``) get an atomic
    read-modify-write, so concurrent dismissals from other requests are kept.
    """

    def __init__(self, user_id: str, store: MutableMapping[str, str] | None = None) -> None:
        if not user_id:
            raise ValueError("DismissalState requires a user id.")
        self._user_id = user_id
        self._store: MutableMapping[str, str] = store if store is not None else {}
        self._dismissed = _decode_dismissed(self._store.get(self.key), user_id)

    @property
    def key(self) -> str:
        return f"{DISMISSED_KEY}:{self._user_id}"

    def _write(self, combine: Callable[[str | None], str]) -> None:
        merge = getattr(self._store, "merge", None)
        if merge is not None:
            raw = merge(self.key, combine)
        else:
            raw = combine(self._store.get(self.key))
            self._store[self.key] = raw
        self._dismissed = _decode_dismissed(raw, self._user_id)

    @property
    def dismissed(self) -> frozenset[str]:
        return frozenset(self._dismissed)

    def is_dismissed(self, message_id: str) -> bool:
        return message_id in self._dismissed

    def dismiss(self, message_id: str) -> bool:
        """Record *message_id* as dismissed; returns False when it already was."""

        if not message_id:
            raise ValueError("message_id is required.")

        added = False

        def combine(raw: str | None) -> str:
            nonlocal added
            values = _decode_dismissed(raw, self._user_id)
            added = message_id not in values
            values.add(message_id)
            return _encode_dismissed(values)

        self._write(combine)
        return added

    def clear(self) -> None:
        self._write(lambda _raw: _encode_dismissed(set()))
