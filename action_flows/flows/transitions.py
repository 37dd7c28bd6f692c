"""Approval lifecycle of a single task."""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping

from .status import (
    APPROVAL_APPROVED,
    APPROVAL_NONE,
    APPROVAL_PENDING,
    APPROVAL_REFUSED,
    get_task_approval_status,
    is_task_completed,
    task_requires_approval,
)

NOT_STARTED = "not_started"
PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REFUSED = "refused"
COMPLETED_NO_APPROVAL = "completed_no_approval"

DECISION_APPROVE = "approved"
DECISION_REFUSE = "refused"
DECISION_RESET = "reset"


class TaskTransitionError(Exception):
    """Raised when an approval decision does not apply to the task's state."""


def classify_task(task: Mapping[str, Any]) -> str:
    """Return the lifecycle state a task is in."""

    if not is_task_completed(task):
        return NOT_STARTED
    if not task_requires_approval(task):
        return COMPLETED_NO_APPROVAL

    status = get_task_approval_status(task)
    if status == APPROVAL_APPROVED:
        return APPROVED
    if status == APPROVAL_REFUSED:
        return REFUSED
    # a gated task completed before approval tracking existed still waits
    return PENDING_APPROVAL


def set_task_completion(task: Mapping[str, Any], completed: bool) -> Dict[str, Any]:
    """Return a copy of *task* marked complete or incomplete.

    Completing an approval-gated task always queues it for approval again, and
    un-completing any task clears its approval status.
    """

    updated = copy.deepcopy(dict(task))
    updated["completed"] = bool(completed)
    if completed and task_requires_approval(task):
        updated["approval_status"] = APPROVAL_PENDING
    else:
        updated["approval_status"] = APPROVAL_NONE
    return updated


def apply_approval_decision(task: Mapping[str, Any], decision: str) -> Dict[str, Any]:
    """Return a copy of *task* after an admin approve, refuse or reset."""

    if decision not in {DECISION_APPROVE, DECISION_REFUSE, DECISION_RESET}:
        raise TaskTransitionError(f"Unknown approval decision '{decision}'")

    state = classify_task(task)
    if state == NOT_STARTED:
        raise TaskTransitionError("Only completed tasks can be reviewed")
    if state == COMPLETED_NO_APPROVAL:
        raise TaskTransitionError("Task does not require approval")

    updated = copy.deepcopy(dict(task))
    if decision == DECISION_RESET:
        updated["approval_status"] = APPROVAL_PENDING
    else:
        updated["approval_status"] = decision
    return updated
