"""Parsing and copy-on-write editing of a flow's section tree."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Dict, List
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)

INPUT_TYPES = {"text", "file"}


class SectionNotFoundError(LookupError):
    """Raised when a section id is not part of the flow."""


class TaskNotFoundError(LookupError):
    """Raised when a task id is not part of the addressed section."""


class InputNotFoundError(LookupError):
    """Raised when an input id is not part of the addressed task."""


@dataclass(frozen=True)
class TaskLocation:
    section_index: int
    task_index: int


def load_sections(raw: Any) -> List[Dict[str, Any]]:
    """Return the section list stored in *raw*.

    The persistence layer stores sections as a JSON blob, so *raw* may be text,
    bytes, an already decoded list or ``None``. Undecodable or non-list values
    produce an empty tree.
    """

    if raw is None:
        return []

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError) as exc:
            logger.warning("sections_json_invalid", error=str(exc))
            return []

    if not isinstance(raw, list):
        return []

    return [section for section in raw if isinstance(section, dict)]


def dump_sections(sections: List[Dict[str, Any]]) -> str:
    """Return a canonical JSON string with stable ordering and whitespace."""

    return json.dumps(sections, sort_keys=True, separators=(",", ":"), default=str)


def _tasks_of(section: Dict[str, Any]) -> List[Any]:
    tasks = section.get("tasks")
    return tasks if isinstance(tasks, list) else []


def find_section(sections: List[Dict[str, Any]], section_id: str) -> int:
    for index, section in enumerate(sections):
        if isinstance(section, dict) and section.get("id") == section_id:
            return index
    raise SectionNotFoundError(f"Section {section_id} not found")


def find_task(sections: List[Dict[str, Any]], section_id: str, task_id: str) -> TaskLocation:
    """Locate *task_id* inside *section_id*."""

    try:
        section_index = find_section(sections, section_id)
    except SectionNotFoundError as exc:
        raise TaskNotFoundError("Section or task not found") from exc

    for task_index, task in enumerate(_tasks_of(sections[section_index])):
        if isinstance(task, dict) and task.get("id") == task_id:
            return TaskLocation(section_index=section_index, task_index=task_index)
    raise TaskNotFoundError("Section or task not found")


def get_task(sections: List[Dict[str, Any]], location: TaskLocation) -> Dict[str, Any]:
    return sections[location.section_index]["tasks"][location.task_index]


def replace_task(
    sections: List[Dict[str, Any]], location: TaskLocation, task: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Return a copy of *sections* with the task at *location* swapped out."""

    updated = copy.deepcopy(sections)
    updated[location.section_index]["tasks"][location.task_index] = copy.deepcopy(task)
    return updated


def remove_section(sections: List[Dict[str, Any]], section_id: str) -> List[Dict[str, Any]]:
    index = find_section(sections, section_id)
    updated = copy.deepcopy(sections)
    del updated[index]
    return updated


def remove_task(sections: List[Dict[str, Any]], section_id: str, task_id: str) -> List[Dict[str, Any]]:
    location = find_task(sections, section_id, task_id)
    updated = copy.deepcopy(sections)
    del updated[location.section_index]["tasks"][location.task_index]
    return updated


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def update_input_value(task: Dict[str, Any], input_id: str, value: str | None) -> Dict[str, Any]:
    """Return a copy of *task* with the value of *input_id* replaced.

    File inputs hold the URL the object store returned for the upload.
    """

    updated = copy.deepcopy(task)
    inputs = updated.get("inputs")
    if not isinstance(inputs, list):
        raise InputNotFoundError(f"Input {input_id} not found")

    for item in inputs:
        if isinstance(item, dict) and item.get("id") == input_id:
            if item.get("type") == "file" and value and not _is_http_url(value):
                raise ValueError("File inputs must reference an http(s) URL.")
            item["value"] = value
            return updated

    raise InputNotFoundError(f"Input {input_id} not found")
