"""Services for storing and mutating action flows.

Every mutation is a single read-modify-write: the flow row is loaded, the pure
tree transition is applied, the status is re-derived from the new tree and
both are written back together under the row's version counter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Callable, Dict, List, Tuple

import structlog
from sqlalchemy.orm import Session

from action_flows.db import session_scope
from action_flows.models import ActionFlow, User, write_flow_tree

from .messages import append_message, build_message, mark_messages_read
from .models import FlowDraft, FlowUpdate
from .sections import (
    dump_sections,
    find_task,
    get_task,
    load_sections,
    remove_section,
    remove_task,
    replace_task,
    update_input_value,
)
from .status import determine_flow_status
from .transitions import apply_approval_decision, set_task_completion

logger = structlog.get_logger(__name__)

Sections = List[Dict[str, Any]]


class FlowNotFoundError(LookupError):
    """Raised when a flow id does not exist."""


class UnknownAssigneeError(ValueError):
    """Raised when a flow is assigned to a user that does not exist."""


@dataclass(frozen=True)
class FlowRecord:
    """Detached snapshot of a flow row with its section tree decoded."""

    id: str
    title: str
    description: str | None
    deadline: date | None
    user_id: str | None
    status: str
    sections: Sections
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int


@dataclass(frozen=True)
class FlowChange:
    flow: FlowRecord
    previous_status: str
    previous_user_id: str | None
    task: Dict[str, Any] | None = None


def to_record(flow: ActionFlow) -> FlowRecord:
    return FlowRecord(
        id=flow.id,
        title=flow.title,
        description=flow.description,
        deadline=flow.deadline,
        user_id=flow.user_id,
        status=flow.status,
        sections=load_sections(flow.sections_json),
        created_by=flow.created_by,
        created_at=flow.created_at,
        updated_at=flow.updated_at,
        version=flow.version,
    )


def _load_flow(session: Session, flow_id: str) -> ActionFlow:
    flow = session.get(ActionFlow, flow_id)
    if flow is None:
        raise FlowNotFoundError(f"Action flow {flow_id} not found")
    return flow


def _ensure_assignee(session: Session, assignee_id: str | None) -> None:
    if assignee_id is not None and session.get(User, assignee_id) is None:
        raise UnknownAssigneeError(f"User {assignee_id} does not exist")


def create_flow(draft: FlowDraft, *, created_by: str) -> FlowRecord:
    """Persist a newly authored flow and return its snapshot."""

    sections = draft.sections_payload()
    status = determine_flow_status({"sections": sections})
    now = datetime.now(UTC)

    with session_scope() as session:
        _ensure_assignee(session, draft.assignee_id)
        flow = ActionFlow(
            title=draft.title,
            description=draft.description,
            deadline=draft.deadline,
            user_id=draft.assignee_id,
            status=status,
            sections_json=dump_sections(sections),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        session.add(flow)
        session.flush()
        record = to_record(flow)

    logger.info("flow_created", flow_id=record.id, status=record.status, assignee_id=record.user_id)
    return record


def get_flow(flow_id: str) -> FlowRecord:
    with session_scope() as session:
        return to_record(_load_flow(session, flow_id))


def delete_flow(flow_id: str) -> None:
    with session_scope() as session:
        session.delete(_load_flow(session, flow_id))
    logger.info("flow_deleted", flow_id=flow_id)


def _mutate_tree(
    flow_id: str,
    *,
    changed_by: str,
    mutate: Callable[[Sections], Tuple[Sections, Dict[str, Any] | None]],
    details: Dict[str, Any] | None = None,
    event: str,
) -> FlowChange:
    with session_scope() as session:
        flow = _load_flow(session, flow_id)
        previous_status = flow.status
        previous_user_id = flow.user_id

        sections, task = mutate(load_sections(flow.sections_json))
        new_status = determine_flow_status({"sections": sections})

        write_flow_tree(
            session,
            flow,
            sections_json=dump_sections(sections),
            new_status=new_status,
            changed_by=changed_by,
            details=details,
        )
        record = to_record(flow)

    log = logger.bind(flow_id=flow_id, changed_by=changed_by)
    log.info(event, status=record.status, version=record.version)
    if previous_status != record.status:
        log.info("flow_status_changed", from_status=previous_status, to_status=record.status)

    return FlowChange(flow=record, previous_status=previous_status, previous_user_id=previous_user_id, task=task)


def update_flow_details(flow_id: str, update: FlowUpdate, *, changed_by: str) -> FlowChange:
    """Apply an admin edit of the flow's fields and, optionally, its tree."""

    changes = update.changed_fields()
    replacement = changes.pop("sections", None)
    details: Dict[str, Any] = {}
    for field in ("title", "description", "deadline"):
        if field in changes:
            details[field] = changes[field]
    if "assignee_id" in changes:
        details["user_id"] = changes["assignee_id"]

    if details.get("user_id") is not None:
        with session_scope() as session:
            _ensure_assignee(session, details["user_id"])

    def mutate(sections: Sections):
        return (replacement if replacement is not None else sections), None

    return _mutate_tree(flow_id, changed_by=changed_by, mutate=mutate, details=details, event="flow_updated")


def delete_section(flow_id: str, section_id: str, *, changed_by: str) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=changed_by,
        mutate=lambda sections: (remove_section(sections, section_id), None),
        event="section_deleted",
    )


def delete_task(flow_id: str, section_id: str, task_id: str, *, changed_by: str) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=changed_by,
        mutate=lambda sections: (remove_task(sections, section_id, task_id), None),
        event="task_deleted",
    )


def _task_mutation(section_id: str, task_id: str, change: Callable[[Dict[str, Any]], Dict[str, Any]]):
    def mutate(sections: Sections):
        location = find_task(sections, section_id, task_id)
        task = change(get_task(sections, location))
        return replace_task(sections, location, task), task

    return mutate


def update_task_completion(
    flow_id: str, section_id: str, task_id: str, completed: bool, *, changed_by: str
) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=changed_by,
        mutate=_task_mutation(section_id, task_id, lambda task: set_task_completion(task, completed)),
        event="task_completion_updated",
    )


def update_task_approval(
    flow_id: str, section_id: str, task_id: str, decision: str, *, admin_id: str
) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=admin_id,
        mutate=_task_mutation(section_id, task_id, lambda task: apply_approval_decision(task, decision)),
        event="task_approval_updated",
    )


def update_task_input(
    flow_id: str, section_id: str, task_id: str, input_id: str, value: str | None, *, changed_by: str
) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=changed_by,
        mutate=_task_mutation(section_id, task_id, lambda task: update_input_value(task, input_id, value)),
        event="task_input_updated",
    )


def add_task_message(
    flow_id: str,
    section_id: str,
    task_id: str,
    text: str,
    *,
    sender_id: str,
    sender_name: str,
) -> FlowChange:
    message = build_message(text, sender_id=sender_id, sender_name=sender_name)
    return _mutate_tree(
        flow_id,
        changed_by=sender_id,
        mutate=_task_mutation(section_id, task_id, lambda task: append_message(task, message)),
        event="task_message_added",
    )


def mark_task_messages_read(flow_id: str, section_id: str, task_id: str, *, reader_id: str) -> FlowChange:
    return _mutate_tree(
        flow_id,
        changed_by=reader_id,
        mutate=_task_mutation(section_id, task_id, lambda task: mark_messages_read(task, reader_id)[0]),
        event="task_messages_read",
    )
