"""Status derivation for action flows, sections and tasks.

Every surface that shows or stores a flow status goes through these helpers:
dashboard listings, the detail view, the persisted ``status`` column and the
notification feed. The functions are pure. They never mutate their input,
never perform I/O and never raise on malformed trees; missing or oddly typed
fields fall back to conservative defaults (an empty task list, an incomplete
task, an approval status of ``none``) so partially loaded data still renders.

Flows, sections and tasks may be plain mappings (parsed JSON) or objects
exposing the same names as attributes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from .sections import load_sections

DRAFT = "Draft"
IN_PROGRESS = "In Progress"
COMPLETED = "Completed"
FLOW_STATUSES = (DRAFT, IN_PROGRESS, COMPLETED)

NOT_STARTED_LABEL = "Not Started"
IN_PROGRESS_LABEL = "In Progress"
COMPLETED_LABEL = "Completed"

APPROVAL_NONE = "none"
APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REFUSED = "refused"
APPROVAL_STATUSES = (APPROVAL_NONE, APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REFUSED)

_DB_TO_DISPLAY = {
    DRAFT: NOT_STARTED_LABEL,
    IN_PROGRESS: IN_PROGRESS_LABEL,
    COMPLETED: COMPLETED_LABEL,
}
_DISPLAY_TO_DB = {label: status for status, label in _DB_TO_DISPLAY.items()}


@dataclass(frozen=True)
class FlowProgress:
    completed_tasks: int
    total_tasks: int
    percent: int


def get_field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _is_record(item: Any) -> bool:
    if item is None or isinstance(item, (str, bytes, int, float, bool, list, tuple)):
        return False
    return True


def iter_sections(flow: Any) -> Iterator[Any]:
    """Yield the well-formed sections of *flow* in order."""

    if flow is None:
        return
    raw = get_field(flow, "sections")
    if isinstance(raw, (str, bytes)):
        raw = load_sections(raw)
    if not isinstance(raw, (list, tuple)):
        return
    for section in raw:
        if _is_record(section):
            yield section


def section_tasks(section: Any) -> list[Any]:
    """Return the well-formed tasks of *section*; anything else yields ``[]``."""

    if not _is_record(section):
        return []
    raw = get_field(section, "tasks")
    if not isinstance(raw, (list, tuple)):
        return []
    return [task for task in raw if _is_record(task)]


def iter_tasks(flow: Any) -> Iterator[Any]:
    for section in iter_sections(flow):
        yield from section_tasks(section)


def is_task_completed(task: Any) -> bool:
    return get_field(task, "completed") is True


def task_requires_approval(task: Any) -> bool:
    return get_field(task, "requires_approval") is True


def get_task_approval_status(task: Any) -> str:
    """Return the task's approval status, ``none`` when missing or unknown."""

    if not _is_record(task):
        return APPROVAL_NONE
    value = get_field(task, "approval_status")
    if isinstance(value, str) and value in APPROVAL_STATUSES:
        return value
    return APPROVAL_NONE


def is_task_done(task: Any) -> bool:
    """A task counts as done once completed and, when gated, approved."""

    if not is_task_completed(task):
        return False
    if task_requires_approval(task):
        return get_task_approval_status(task) == APPROVAL_APPROVED
    return True


def task_needs_attention(task: Any) -> bool:
    """Return True for completed tasks an admin refused."""

    return is_task_completed(task) and get_task_approval_status(task) == APPROVAL_REFUSED


def is_section_approved(section: Any) -> bool:
    """Return True when every task of *section* counts as done.

    Sections without tasks are never approved. Tasks that do not require
    approval only need to be completed; approval-gated tasks must also carry
    an ``approved`` status, so a single pending or refused task holds the
    whole section back.
    """

    tasks = section_tasks(section)
    if not tasks:
        return False
    return all(is_task_done(task) for task in tasks)


def determine_flow_status(flow: Any) -> str:
    """Derive the flow status (``Draft``, ``In Progress`` or ``Completed``)."""

    tasks = list(iter_tasks(flow))
    completed = sum(1 for task in tasks if is_task_completed(task))

    if not tasks or completed == 0:
        return DRAFT
    if all(is_task_done(task) for task in tasks):
        return COMPLETED
    return IN_PROGRESS


def is_flow_approved(flow: Any) -> bool:
    """Return True unless a completed approval-gated task is still unapproved."""

    for task in iter_tasks(flow):
        if (
            task_requires_approval(task)
            and is_task_completed(task)
            and get_task_approval_status(task) != APPROVAL_APPROVED
        ):
            return False
    return True


def are_all_sections_approved(flow: Any) -> bool:
    sections = list(iter_sections(flow))
    return bool(sections) and all(is_section_approved(section) for section in sections)


def compute_progress(flow: Any) -> FlowProgress:
    """Return completed/total task counts and a round-half-up percentage."""

    total = 0
    completed = 0
    for task in iter_tasks(flow):
        total += 1
        if is_task_completed(task):
            completed += 1

    if total == 0:
        return FlowProgress(completed_tasks=0, total_tasks=0, percent=0)

    # floor(100 * c / t + 1/2) in integer arithmetic
    percent = (200 * completed + total) // (2 * total)
    return FlowProgress(completed_tasks=completed, total_tasks=total, percent=percent)


def count_sections_and_tasks(flow: Any) -> tuple[int, int]:
    sections = list(iter_sections(flow))
    return len(sections), sum(len(section_tasks(section)) for section in sections)


def to_display_status(db_status: str | None) -> str:
    return _DB_TO_DISPLAY.get(db_status or "", NOT_STARTED_LABEL)


def to_db_status(display_status: str | None) -> str:
    if display_status in _DB_TO_DISPLAY:
        return display_status
    return _DISPLAY_TO_DB.get(display_status or "", DRAFT)


def get_display_status_label(flow_status: str | None, sections_approved: bool) -> str:
    """Map a flow status to the bucket shown to users.

    A flow whose tasks are all completed but which still waits on an approval
    is presented as in progress.
    """

    status = to_db_status(flow_status)
    if status == COMPLETED and not sections_approved:
        return IN_PROGRESS_LABEL
    return to_display_status(status)


def describe_flow(flow: Any) -> dict[str, Any]:
    """Bundle every derived value a flow view needs in one pass."""

    status = determine_flow_status(flow)
    approved = is_flow_approved(flow)
    progress = compute_progress(flow)
    section_count, task_count = count_sections_and_tasks(flow)
    return {
        "status": status,
        "display_status": get_display_status_label(status, approved),
        "is_approved": approved,
        "progress": {
            "completed_tasks": progress.completed_tasks,
            "total_tasks": progress.total_tasks,
            "percent": progress.percent,
        },
        "section_count": section_count,
        "task_count": task_count,
        "sections": [
            {"id": get_field(section, "id"), "is_approved": is_section_approved(section)}
            for section in iter_sections(flow)
        ],
    }
