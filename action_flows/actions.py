"""Helpers for parsing action payloads and checking caller roles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

APPROVAL_DECISIONS = ("approved", "refused", "reset")


@dataclass(frozen=True)
class TaskRef:
    """Identifies a single task inside a flow's section tree."""

    flow_id: str
    section_id: str
    task_id: str


def parse_task_ref(flow_id: str | None, section_id: str | None, task_id: str | None) -> TaskRef:
    """Validate the identifiers of a task addressed by a request."""

    parts = {"flow_id": flow_id, "section_id": section_id, "task_id": task_id}
    for name, value in parts.items():
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Invalid {name}.")
    return TaskRef(flow_id=flow_id.strip(), section_id=section_id.strip(), task_id=task_id.strip())


def parse_completion_payload(payload: Mapping[str, Any] | None) -> bool:
    """Return the requested completion flag."""

    if not isinstance(payload, Mapping):
        raise ValueError("Invalid completion payload.")
    completed = payload.get("completed")
    if not isinstance(completed, bool):
        raise ValueError("completed must be a boolean.")
    return completed


def parse_approval_payload(payload: Mapping[str, Any] | None) -> str:
    """Return the requested approval decision."""

    if not isinstance(payload, Mapping):
        raise ValueError("Invalid approval payload.")
    decision = payload.get("decision")
    if not isinstance(decision, str):
        raise ValueError("decision is required.")
    decision = decision.strip().lower()
    # "none" is what older clients send for the reset button
    if decision == "none":
        decision = "reset"
    if decision not in APPROVAL_DECISIONS:
        raise ValueError(f"Unsupported decision '{decision}'.")
    return decision


def parse_text_payload(payload: Mapping[str, Any] | None, *, field: str = "text") -> str:
    if not isinstance(payload, Mapping):
        raise ValueError("Invalid payload.")
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required.")
    return value.strip()


def is_user_authorized(user_id: str, allowed_ids: Iterable[str]) -> bool:
    """Return True when the user is in the configured allow list."""

    normalized = {item.strip() for item in allowed_ids if item}
    return user_id in normalized


def is_admin(user_id: str | None, *, role: str | None, admin_ids: Iterable[str]) -> bool:
    """Return True for users with the admin role or listed as master admins."""

    if not user_id:
        return False
    if role == "admin":
        return True
    return is_user_authorized(user_id, admin_ids)
