"""Data access helpers for admin and user dashboards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Literal, Sequence

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from action_flows.flows.feed import has_approaching_deadline
from action_flows.flows.messages import count_unread_messages_in_flow
from action_flows.flows.sections import load_sections
from action_flows.flows.status import (
    COMPLETED,
    FlowProgress,
    compute_progress,
    count_sections_and_tasks,
    determine_flow_status,
    get_display_status_label,
    is_flow_approved,
)
from action_flows.models import ActionFlow

from .filters import FlowFilters

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FlowSummary:
    """Dashboard card for one flow with every derived value precomputed."""

    id: str
    title: str
    description: str | None
    deadline: date | None
    user_id: str | None
    status: str
    display_status: str
    is_approved: bool
    progress: FlowProgress
    section_count: int
    task_count: int
    unread_messages: int
    has_approaching_deadline: bool
    created_at: datetime


def summarise_flow(
    row: ActionFlow,
    *,
    viewer_id: str | None,
    today: date,
    warning_days: int,
) -> FlowSummary:
    flow = {"sections": load_sections(row.sections_json)}
    status = determine_flow_status(flow)
    if status != row.status:
        logger.warning("flow_status_stale", flow_id=row.id, stored=row.status, derived=status)
    approved = is_flow_approved(flow)
    section_count, task_count = count_sections_and_tasks(flow)

    return FlowSummary(
        id=row.id,
        title=row.title,
        description=row.description,
        deadline=row.deadline,
        user_id=row.user_id,
        status=status,
        display_status=get_display_status_label(status, approved),
        is_approved=approved,
        progress=compute_progress(flow),
        section_count=section_count,
        task_count=task_count,
        unread_messages=count_unread_messages_in_flow(flow, viewer_id),
        has_approaching_deadline=has_approaching_deadline(flow, today=today, warning_days=warning_days),
        created_at=row.created_at,
    )


def _apply_filters(
    statement: Select,
    *,
    statuses: Sequence[str] | Iterable[str] | None,
    assignee_id: str | None,
) -> Select:
    if statuses:
        statement = statement.where(ActionFlow.status.in_(tuple(dict.fromkeys(statuses))))

    if assignee_id:
        statement = statement.where(ActionFlow.user_id == assignee_id)

    return statement


def _apply_sort(statement: Select, *, sort_by: str, sort_order: Literal["asc", "desc"] = "desc") -> Select:
    descending = sort_order.lower() == "desc"
    column = {
        "title": ActionFlow.title,
        "status": ActionFlow.status,
        "deadline": ActionFlow.deadline,
    }.get(sort_by, ActionFlow.created_at)

    clause = column.desc() if descending else column.asc()
    return statement.order_by(clause, ActionFlow.id.asc())


def list_flows(
    session: Session,
    *,
    filters: FlowFilters,
    viewer_id: str | None,
    today: date,
    warning_days: int,
    assigned_to: str | None = None,
) -> List[FlowSummary]:
    """Return flow summaries matching *filters*.

    *assigned_to* restricts the listing to one assignee regardless of the
    filter, which is how regular users only ever see their own flows.
    """

    statement = select(ActionFlow)
    statement = _apply_filters(statement, statuses=filters.statuses, assignee_id=filters.assignee_id)
    if assigned_to is not None:
        statement = statement.where(ActionFlow.user_id == assigned_to)

    statement = _apply_sort(statement, sort_by=filters.sort_by, sort_order=filters.sort_order)
    statement = statement.offset(max(filters.offset, 0)).limit(filters.limit)

    rows = session.scalars(statement).all()
    return [
        summarise_flow(row, viewer_id=viewer_id, today=today, warning_days=warning_days)
        for row in rows
    ]


def list_flows_for_feed(session: Session, *, user_id: str, include_all: bool = False) -> List[dict]:
    """Return decoded flows (id, title, sections) used to build a notification feed."""

    statement = select(ActionFlow.id, ActionFlow.title, ActionFlow.sections_json)
    if not include_all:
        statement = statement.where(ActionFlow.user_id == user_id)
    return [
        {"id": flow_id, "title": title, "sections": load_sections(sections_json)}
        for flow_id, title, sections_json in session.execute(statement).all()
    ]


def count_completed_flows(summaries: Iterable[FlowSummary]) -> int:
    return sum(1 for summary in summaries if summary.status == COMPLETED)
