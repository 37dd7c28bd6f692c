"""Persisted notifications and the per-user preference store."""

from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Iterator, List

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from action_flows.db import session_scope
from action_flows.models import Notification, OptimisticLockError, UserPreference
from action_flows.users import find_admin_id

logger = structlog.get_logger(__name__)

TYPE_MESSAGE = "message"
TYPE_TASK_REFUSED = "task_refused"
TYPE_ASSIGNMENT = "assignment"


@dataclass(frozen=True)
class NotificationSummary:
    id: str
    user_id: str
    flow_id: str
    section_id: str | None
    task_id: str | None
    message: str
    sender_id: str
    sender_name: str
    type: str
    read: bool
    created_at: datetime


def _to_summary(row: Notification) -> NotificationSummary:
    return NotificationSummary(
        id=row.id,
        user_id=row.user_id,
        flow_id=row.flow_id,
        section_id=row.section_id,
        task_id=row.task_id,
        message=row.message,
        sender_id=row.sender_id,
        sender_name=row.sender_name,
        type=row.type,
        read=row.read,
        created_at=row.created_at,
    )


def create_notification(
    *,
    user_id: str,
    flow_id: str,
    message: str,
    sender_id: str,
    sender_name: str,
    section_id: str | None = None,
    task_id: str | None = None,
    type: str = TYPE_MESSAGE,
) -> NotificationSummary:
    """Store a notification for *user_id*."""

    with session_scope() as session:
        row = Notification(
            user_id=user_id,
            flow_id=flow_id,
            section_id=section_id,
            task_id=task_id,
            message=message,
            sender_id=sender_id,
            sender_name=sender_name,
            type=type,
            read=False,
            created_at=datetime.now(UTC),
        )
        session.add(row)
        session.flush()
        summary = _to_summary(row)

    logger.info("notification_created", notification_id=summary.id, user_id=user_id, type=type)
    return summary


def list_notifications(user_id: str, *, unread_only: bool = False, limit: int = 50) -> List[NotificationSummary]:
    if not user_id:
        return []

    statement = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        statement = statement.where(Notification.read.is_(False))
    statement = statement.order_by(Notification.created_at.desc()).limit(limit)

    with session_scope() as session:
        return [_to_summary(row) for row in session.scalars(statement).all()]


def mark_notifications_read(
    user_id: str,
    *,
    flow_id: str | None = None,
    section_id: str | None = None,
    task_id: str | None = None,
    type: str | None = TYPE_MESSAGE,
) -> int:
    """Mark matching notifications of *user_id* as read; returns the row count."""

    statement = update(Notification).where(Notification.user_id == user_id)
    if flow_id is not None:
        statement = statement.where(Notification.flow_id == flow_id)
    if section_id is not None:
        statement = statement.where(Notification.section_id == section_id)
    if task_id is not None:
        statement = statement.where(Notification.task_id == task_id)
    if type is not None:
        statement = statement.where(Notification.type == type)

    with session_scope() as session:
        result = session.execute(statement.values(read=True).execution_options(synchronize_session=False))
        return result.rowcount or 0


def delete_notifications(user_id: str, *, type: str = TYPE_MESSAGE) -> int:
    statement = delete(Notification).where(Notification.user_id == user_id, Notification.type == type)
    with session_scope() as session:
        result = session.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount or 0


def notify_message_recipient(
    *,
    flow_id: str,
    assignee_id: str | None,
    section_id: str,
    task_id: str,
    text: str,
    sender_id: str,
    sender_name: str,
    sender_is_admin: bool,
) -> NotificationSummary | None:
    """Notify the other party of a task conversation.

    Messages from an admin go to the flow assignee; messages from the assignee
    go to the first admin account.
    """

    if sender_is_admin:
        recipient_id = assignee_id
    else:
        recipient_id = find_admin_id(exclude=sender_id)

    if not recipient_id or recipient_id == sender_id:
        logger.info("message_notification_skipped", flow_id=flow_id, reason="no_recipient")
        return None

    return create_notification(
        user_id=recipient_id,
        flow_id=flow_id,
        section_id=section_id,
        task_id=task_id,
        message=text,
        sender_id=sender_id,
        sender_name=sender_name,
        type=TYPE_MESSAGE,
    )


class PreferenceStore(MutableMapping):
    """Key/value view over one user's rows in ``user_preferences``.

    Writes go through :meth:`merge`, a compare-and-swap on the stored value,
    so concurrent requests for the same user never overwrite each other or
    race on the first insert.
    """

    MERGE_ATTEMPTS = 5

    def __init__(self, user_id: str) -> None:
        self._user_id = user_id

    def _statement(self, key: str):
        return select(UserPreference).where(UserPreference.user_id == self._user_id, UserPreference.key == key)

    def __getitem__(self, key: str) -> str:
        with session_scope() as session:
            row = session.scalars(self._statement(key)).one_or_none()
            if row is None:
                raise KeyError(key)
            return row.value

    def __setitem__(self, key: str, value: str) -> None:
        self.merge(key, lambda _current: value)

    def merge(self, key: str, combine: Callable[[str | None], str]) -> str:
        """Store ``combine(current)`` at *key* and return it.

        *combine* receives ``None`` when the key is unset. It is called again
        with the fresh value whenever another writer got there first.
        """

        for attempt in range(1, self.MERGE_ATTEMPTS + 1):
            try:
                with session_scope() as session:
                    row = session.scalars(self._statement(key)).one_or_none()
                    if row is None:
                        value = combine(None)
                        session.add(UserPreference(user_id=self._user_id, key=key, value=value))
                        session.flush()
                        return value

                    value = combine(row.value)
                    result = session.execute(
                        update(UserPreference)
                        .where(UserPreference.id == row.id, UserPreference.value == row.value)
                        .values(value=value, updated_at=datetime.now(UTC))
                    )
                    if result.rowcount == 1:
                        return value
            except IntegrityError:
                pass
            logger.info("preference_write_conflict", user_id=self._user_id, key=key, attempt=attempt)

        raise OptimisticLockError(f"Preference {key} for user {self._user_id} kept changing concurrently")

    def __delitem__(self, key: str) -> None:
        with session_scope() as session:
            row = session.scalars(self._statement(key)).one_or_none()
            if row is None:
                raise KeyError(key)
            session.delete(row)

    def _keys(self) -> List[str]:
        statement = select(UserPreference.key).where(UserPreference.user_id == self._user_id)
        with session_scope() as session:
            return list(session.scalars(statement).all())

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys())

    def __len__(self) -> int:
        return len(self._keys())
