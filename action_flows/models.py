"""SQLAlchemy models for action flows, users and notifications."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, List, Mapping
from uuid import uuid4

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, update
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from action_flows.db import Base


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    """A person who authors flows (admin) or works through them (user)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ActionFlow(Base):
    """A workflow whose section/task tree is stored as a JSON blob."""

    __tablename__ = "action_flows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Draft")
    sections_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status_history: Mapped[List["StatusHistory"]] = relationship(
        "StatusHistory",
        back_populates="flow",
        cascade="all, delete-orphan",
        order_by="StatusHistory.changed_at",
    )


class Notification(Base):
    """A notice shown to a user about a task of one of their flows."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    flow_id: Mapped[str] = mapped_column(ForeignKey("action_flows.id", ondelete="CASCADE"), nullable=False)
    section_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    task_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="message")
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StatusHistory(Base):
    """Audit log of persisted flow status transitions."""

    __tablename__ = "status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flow_id: Mapped[str] = mapped_column(ForeignKey("action_flows.id", ondelete="CASCADE"), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)

    flow: Mapped[ActionFlow] = relationship("ActionFlow", back_populates="status_history")


class UserPreference(Base):
    """Per-user key/value storage for client-side UI state."""

    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_user_preferences_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class OptimisticLockError(Exception):
    """Raised when a concurrent update is detected."""


def write_flow_tree(
    session: Session,
    flow: ActionFlow,
    *,
    sections_json: str,
    new_status: str,
    changed_by: str,
    changed_at: datetime | None = None,
    details: Mapping[str, Any] | None = None,
) -> ActionFlow:
    """Persist a new section tree and its derived status with optimistic locking.

    The tree and the status cache are written in the same statement so that the
    stored status never drifts from the stored tasks. *details* carries other
    column edits (title, deadline, assignee...) made in the same write. A
    history row is added whenever the persisted status changes.
    """

    changed_time = changed_at or _utcnow()
    previous_status = flow.status

    stmt = (
        update(ActionFlow)
        .where(ActionFlow.id == flow.id, ActionFlow.version == flow.version)
        .values(
            **dict(details or {}),
            sections_json=sections_json,
            status=new_status,
            updated_at=changed_time,
            version=flow.version + 1,
        )
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        session.rollback()
        raise OptimisticLockError(f"Action flow {flow.id} was updated concurrently")

    session.refresh(flow)

    if previous_status != new_status:
        session.add(
            StatusHistory(
                flow_id=flow.id,
                from_status=previous_status,
                to_status=new_status,
                changed_at=changed_time,
                changed_by=changed_by,
            )
        )

    return flow
