"""User accounts: the admins who author flows and the people assigned to them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List

import structlog
from pydantic import BaseModel, field_validator
from sqlalchemy import delete, select

from action_flows.db import session_scope
from action_flows.models import Notification, User, UserPreference

logger = structlog.get_logger(__name__)

ROLES = {"admin", "user"}
STATUSES = {"active", "inactive"}


class DuplicateUserError(Exception):
    """Raised when an email address is already registered."""


class UserNotFoundError(LookupError):
    """Raised when no account matches the requested id."""


class UserCreate(BaseModel):
    name: str
    email: str
    role: str = "user"
    id: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        trimmed = (value or "").strip()
        if not trimmed:
            raise ValueError("name must not be empty")
        return trimmed

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        trimmed = (value or "").strip().lower()
        local, _, domain = trimmed.partition("@")
        if not local or "." not in domain:
            raise ValueError("email must be a valid address")
        return trimmed

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        if value not in ROLES:
            raise ValueError("role must be 'admin' or 'user'")
        return value


class UserUpdate(BaseModel):
    """Partial edit of an account; fields that are not sent stay unchanged."""

    name: str | None = None
    role: str | None = None
    status: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        trimmed = (value or "").strip()
        if not trimmed:
            raise ValueError("name must not be empty")
        return trimmed

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str | None) -> str:
        if value not in ROLES:
            raise ValueError("role must be 'admin' or 'user'")
        return value

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str | None) -> str:
        if value not in STATUSES:
            raise ValueError("status must be 'active' or 'inactive'")
        return value


@dataclass(frozen=True)
class UserSummary:
    id: str
    name: str
    email: str
    role: str
    status: str


def _to_summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, name=user.name, email=user.email, role=user.role, status=user.status)


def create_user(payload: UserCreate) -> UserSummary:
    with session_scope() as session:
        existing = session.execute(select(User.id).where(User.email == payload.email)).scalar_one_or_none()
        if existing is not None:
            raise DuplicateUserError(f"A user with email {payload.email} already exists.")

        user = User(name=payload.name, email=payload.email, role=payload.role, created_at=datetime.now(UTC))
        if payload.id:
            user.id = payload.id
        session.add(user)
        session.flush()
        summary = _to_summary(user)

    logger.info("user_created", user_id=summary.id, role=summary.role)
    return summary


def get_user(user_id: str | None) -> UserSummary | None:
    if not user_id:
        return None
    with session_scope() as session:
        user = session.get(User, user_id)
        return _to_summary(user) if user is not None else None


def list_users(*, role: str | None = None) -> List[UserSummary]:
    statement = select(User).order_by(User.name.asc())
    if role:
        statement = statement.where(User.role == role)
    with session_scope() as session:
        return [_to_summary(user) for user in session.scalars(statement).all()]


def find_admin_id(*, exclude: str | None = None) -> str | None:
    """Return the id of the longest-standing admin, skipping *exclude*."""

    statement = select(User.id).where(User.role == "admin").order_by(User.created_at.asc(), User.id.asc())
    if exclude:
        statement = statement.where(User.id != exclude)
    with session_scope() as session:
        return session.execute(statement.limit(1)).scalar_one_or_none()


def update_user(user_id: str, payload: UserUpdate) -> UserSummary:
    changes = payload.model_dump(exclude_unset=True)
    with session_scope() as session:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        for field, value in changes.items():
            setattr(user, field, value)
        summary = _to_summary(user)

    logger.info("user_updated", user_id=user_id, fields=sorted(changes))
    return summary


def delete_user(user_id: str) -> None:
    """Remove an account with its notifications and preferences.

    Flows assigned to the user are kept and become unassigned.
    """

    with session_scope() as session:
        if session.get(User, user_id) is None:
            raise UserNotFoundError(f"User {user_id} not found")
        session.execute(delete(Notification).where(Notification.user_id == user_id))
        session.execute(delete(UserPreference).where(UserPreference.user_id == user_id))
        session.execute(delete(User).where(User.id == user_id))

    logger.info("user_deleted", user_id=user_id)
