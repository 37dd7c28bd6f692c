"""Action flow trees: status derivation, task transitions and storage."""

from .models import FlowDraft, FlowUpdate, InputDefinition, SectionDefinition, TaskDefinition
from .status import (
    COMPLETED,
    DRAFT,
    IN_PROGRESS,
    FlowProgress,
    compute_progress,
    determine_flow_status,
    get_display_status_label,
    is_flow_approved,
    is_section_approved,
)
from .transitions import TaskTransitionError, apply_approval_decision, classify_task, set_task_completion

__all__ = [
    "COMPLETED",
    "DRAFT",
    "IN_PROGRESS",
    "FlowDraft",
    "FlowUpdate",
    "FlowProgress",
    "InputDefinition",
    "SectionDefinition",
    "TaskDefinition",
    "TaskTransitionError",
    "apply_approval_decision",
    "classify_task",
    "compute_progress",
    "determine_flow_status",
    "get_display_status_label",
    "is_flow_approved",
    "is_section_approved",
    "set_task_completion",
]
