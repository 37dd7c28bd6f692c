"""Tests for flow status derivation."""

import copy
from pathlib import Path
import sys
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from action_flows.flows.status import (  # noqa: E402
    COMPLETED,
    DRAFT,
    IN_PROGRESS,
    FlowProgress,
    are_all_sections_approved,
    compute_progress,
    count_sections_and_tasks,
    describe_flow,
    determine_flow_status,
    get_display_status_label,
    get_task_approval_status,
    is_flow_approved,
    is_section_approved,
    task_needs_attention,
    to_db_status,
    to_display_status,
)


def _task(completed=False, requires_approval=False, approval_status="none", **extra):
    return {
        "id": extra.pop("id", "t"),
        "title": "Task",
        "completed": completed,
        "requires_approval": requires_approval,
        "approval_status": approval_status,
        **extra,
    }


def _flow(*task_groups):
    return {
        "sections": [
            {"id": f"s{index}", "title": f"Section {index}", "tasks": list(tasks)}
            for index, tasks in enumerate(task_groups)
        ]
    }


def test_progress_of_flow_without_tasks_is_zero():
    assert compute_progress(_flow()) == FlowProgress(completed_tasks=0, total_tasks=0, percent=0)
    assert compute_progress(_flow([])) == FlowProgress(completed_tasks=0, total_tasks=0, percent=0)
    assert compute_progress(None).percent == 0


@pytest.mark.parametrize(
    "completed, total, expected",
    [
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (1, 200, 1),
        (3, 8, 38),
        (1, 2, 50),
        (5, 5, 100),
    ],
)
def test_progress_percent_rounds_half_up(completed, total, expected):
    tasks = [_task(completed=index < completed) for index in range(total)]

    progress = compute_progress(_flow(tasks))

    assert progress.completed_tasks == completed
    assert progress.total_tasks == total
    assert progress.percent == expected


def test_progress_counts_completion_regardless_of_approval():
    flow = _flow([_task(completed=True, requires_approval=True, approval_status="refused"), _task()])

    assert compute_progress(flow) == FlowProgress(completed_tasks=1, total_tasks=2, percent=50)


def test_flow_is_draft_when_no_task_is_completed():
    assert determine_flow_status(_flow()) == DRAFT
    assert determine_flow_status(_flow([])) == DRAFT
    assert determine_flow_status(_flow([_task(), _task(requires_approval=True)], [_task()])) == DRAFT


def test_flow_is_completed_when_every_task_is_done():
    flow = _flow(
        [_task(completed=True), _task(completed=True, requires_approval=True, approval_status="approved")],
        [_task(completed=True)],
    )

    assert determine_flow_status(flow) == COMPLETED


def test_flow_is_in_progress_when_some_tasks_are_completed():
    flow = _flow([_task(completed=True), _task()], [_task()])

    assert determine_flow_status(flow) == IN_PROGRESS


def test_section_without_tasks_is_never_approved():
    assert is_section_approved({"id": "s", "tasks": []}) is False
    assert is_section_approved({"id": "s"}) is False
    assert is_section_approved(None) is False


def test_determine_flow_status_is_idempotent_and_does_not_mutate():
    flow = _flow(
        [_task(completed=True, requires_approval=True, approval_status="pending"), _task()],
        [_task(completed=True, messages=[{"id": "m", "text": "hi"}])],
    )
    snapshot = copy.deepcopy(flow)

    first = determine_flow_status(flow)
    second = determine_flow_status(flow)
    compute_progress(flow)
    is_flow_approved(flow)
    describe_flow(flow)

    assert first == second == IN_PROGRESS
    assert flow == snapshot


def test_completing_another_task_never_moves_status_back_to_draft():
    tasks = [_task(id=f"t{index}", requires_approval=index % 2 == 0) for index in range(4)]
    flow = _flow(tasks)
    previous = determine_flow_status(flow)
    assert previous == DRAFT

    for task in tasks:
        task["completed"] = True
        current = determine_flow_status(flow)
        assert current != DRAFT
        previous = current

    assert previous == IN_PROGRESS


def test_refused_task_holds_section_back():
    section = {
        "id": "s",
        "tasks": [
            _task(completed=True, requires_approval=True, approval_status="approved"),
            _task(completed=True, requires_approval=True, approval_status="refused"),
        ],
    }

    assert is_section_approved(section) is False


def test_section_with_mixed_approval_requirements_is_approved():
    section = {
        "id": "s",
        "tasks": [
            _task(completed=True, requires_approval=False),
            _task(completed=True, requires_approval=True, approval_status="approved"),
        ],
    }

    assert is_section_approved(section) is True


def test_example_flow_with_pending_approval():
    flow = {
        "sections": [
            {
                "id": "s1",
                "tasks": [
                    {"completed": True, "requires_approval": True, "approval_status": "pending"},
                    {"completed": True, "requires_approval": False},
                ],
            }
        ]
    }

    assert determine_flow_status(flow) == IN_PROGRESS
    assert is_section_approved(flow["sections"][0]) is False
    assert compute_progress(flow) == FlowProgress(completed_tasks=2, total_tasks=2, percent=100)


def test_only_literal_true_counts_as_completed_or_gated():
    flow = _flow(
        [
            {"completed": "true", "requires_approval": True},
            {"completed": 1},
        ]
    )

    assert determine_flow_status(flow) == DRAFT
    assert compute_progress(flow).completed_tasks == 0

    # requires_approval must be literally True to gate
    section = {"tasks": [{"completed": True, "requires_approval": "yes", "approval_status": "pending"}]}
    assert is_section_approved(section) is True


def test_missing_requires_approval_is_treated_as_not_gated():
    flow = _flow([{"id": "t", "completed": True}])

    assert determine_flow_status(flow) == COMPLETED
    assert is_flow_approved(flow) is True


def test_unknown_approval_status_is_treated_as_none():
    assert get_task_approval_status({"approval_status": "maybe"}) == "none"
    assert get_task_approval_status({"approval_status": None}) == "none"
    assert get_task_approval_status("not a task") == "none"


def test_malformed_trees_fall_back_to_empty():
    assert determine_flow_status({"sections": "not json"}) == DRAFT
    assert determine_flow_status({"sections": 42}) == DRAFT
    assert determine_flow_status({"sections": [None, "x", {"tasks": "nope"}]}) == DRAFT
    assert count_sections_and_tasks({"sections": [{"tasks": [None, _task(), 3]}]}) == (1, 1)
    assert determine_flow_status({"sections": "[" * 100000 + "]" * 100000}) == DRAFT

    oversized = '[{"tasks": [{"completed": true, "n": ' + "1" * 5000 + "}]}]"
    assert compute_progress({"sections": oversized}).percent == 0
    assert determine_flow_status({"sections": oversized}) == DRAFT


def test_sections_stored_as_json_text_are_decoded():
    flow = {"sections": '[{"id": "s", "tasks": [{"id": "t", "completed": true}]}]'}

    assert determine_flow_status(flow) == COMPLETED
    assert compute_progress(flow).percent == 100


def test_attribute_style_flows_are_supported():
    task = SimpleNamespace(completed=True, requires_approval=True, approval_status="approved")
    section = SimpleNamespace(id="s", tasks=[task])
    flow = SimpleNamespace(sections=[section])

    assert determine_flow_status(flow) == COMPLETED
    assert is_section_approved(section) is True


def test_flow_approval_only_considers_completed_gated_tasks():
    assert is_flow_approved(_flow([_task(requires_approval=True, approval_status="none")])) is True
    assert is_flow_approved(_flow([_task(completed=True, requires_approval=True, approval_status="pending")])) is False
    assert is_flow_approved(_flow([_task(completed=True, requires_approval=True, approval_status="approved")])) is True


def test_all_sections_approved_requires_at_least_one_section():
    assert are_all_sections_approved(_flow()) is False
    assert are_all_sections_approved(_flow([_task(completed=True)], [])) is False
    assert are_all_sections_approved(_flow([_task(completed=True)], [_task(completed=True)])) is True


def test_task_needs_attention_only_for_completed_refused_tasks():
    assert task_needs_attention(_task(completed=True, requires_approval=True, approval_status="refused")) is True
    assert task_needs_attention(_task(completed=False, approval_status="refused")) is False
    assert task_needs_attention(_task(completed=True, requires_approval=True, approval_status="approved")) is False


@pytest.mark.parametrize(
    "status, approved, expected",
    [
        (DRAFT, True, "Not Started"),
        (IN_PROGRESS, True, "In Progress"),
        (COMPLETED, True, "Completed"),
        (COMPLETED, False, "In Progress"),
        ("Not Started", False, "Not Started"),
        (None, True, "Not Started"),
        ("garbage", True, "Not Started"),
    ],
)
def test_display_status_label(status, approved, expected):
    assert get_display_status_label(status, approved) == expected


def test_status_mapping_between_storage_and_display():
    assert to_display_status(DRAFT) == "Not Started"
    assert to_display_status(None) == "Not Started"
    assert to_db_status("Not Started") == DRAFT
    assert to_db_status(COMPLETED) == COMPLETED
    assert to_db_status("unknown") == DRAFT


def test_describe_flow_bundles_derived_values():
    flow = _flow(
        [_task(id="a", completed=True, requires_approval=True, approval_status="approved")],
        [_task(id="b", completed=True, requires_approval=True, approval_status="pending")],
    )

    described = describe_flow(flow)

    assert described["status"] == IN_PROGRESS
    assert described["display_status"] == "In Progress"
    assert described["is_approved"] is False
    assert described["progress"] == {"completed_tasks": 2, "total_tasks": 2, "percent": 100}
    assert described["section_count"] == 2
    assert described["task_count"] == 2
    assert described["sections"] == [
        {"id": "s0", "is_approved": True},
        {"id": "s1", "is_approved": False},
    ]
