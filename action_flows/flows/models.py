"""Pydantic models describing flow authoring and edit payloads."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from .status import APPROVAL_NONE, APPROVAL_PENDING, APPROVAL_STATUSES

_ALLOWED_INPUT_TYPES = {"text", "file"}


def _new_id() -> str:
    return str(uuid4())


def _require_text(value: str, label: str) -> str:
    trimmed = (value or "").strip()
    if not trimmed:
        raise ValueError(f"{label} must not be empty")
    return trimmed


class InputDefinition(BaseModel):
    id: str = Field(default_factory=_new_id)
    label: str
    type: str = Field("text", description="Input type: text or file")
    value: str | None = None

    @field_validator("label")
    @classmethod
    def validate_label(cls, value: str) -> str:
        return _require_text(value, "input label")

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        if value not in _ALLOWED_INPUT_TYPES:
            raise ValueError(f"Unsupported input type '{value}'")
        return value


class TaskDefinition(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    deadline: date | None = None
    completed: bool = False
    requires_approval: bool = True
    approval_status: str = APPROVAL_NONE
    inputs: List[InputDefinition] = Field(default_factory=list)
    messages: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _require_text(value, "task title")

    @field_validator("approval_status")
    @classmethod
    def validate_approval_status(cls, value: str) -> str:
        if value not in APPROVAL_STATUSES:
            raise ValueError(f"Unsupported approval status '{value}'")
        return value

    @model_validator(mode="after")
    def align_approval_status(self):
        """Keep ``approval_status`` consistent with completion and gating."""

        if not self.completed or not self.requires_approval:
            self.approval_status = APPROVAL_NONE
        elif self.approval_status == APPROVAL_NONE:
            self.approval_status = APPROVAL_PENDING
        return self


class SectionDefinition(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    tasks: List[TaskDefinition] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _require_text(value, "section title")


def _check_unique_ids(sections: List[SectionDefinition]) -> None:
    section_ids: set[str] = set()
    task_ids: set[str] = set()
    for section in sections:
        if section.id in section_ids:
            raise ValueError(f"duplicate section id '{section.id}'")
        section_ids.add(section.id)
        for task in section.tasks:
            if task.id in task_ids:
                raise ValueError(f"duplicate task id '{task.id}'")
            task_ids.add(task.id)


class FlowDraft(BaseModel):
    """Payload an admin submits to author a new flow."""

    title: str
    description: str | None = None
    deadline: date | None = None
    assignee_id: str | None = None
    sections: List[SectionDefinition] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _require_text(value, "flow title")

    @field_validator("assignee_id")
    @classmethod
    def validate_assignee(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None

    @field_validator("sections")
    @classmethod
    def validate_sections(cls, value: List[SectionDefinition]) -> List[SectionDefinition]:
        _check_unique_ids(value)
        return value

    def sections_payload(self) -> List[Dict[str, Any]]:
        return [section.model_dump(mode="json") for section in self.sections]


class FlowUpdate(BaseModel):
    """Partial edit of a flow; only the fields that were sent are applied."""

    title: str | None = None
    description: str | None = None
    deadline: date | None = None
    assignee_id: str | None = None
    sections: List[SectionDefinition] | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str | None) -> str:
        # runs only when the field was sent
        if value is None:
            raise ValueError("flow title must not be empty")
        return _require_text(value, "flow title")

    @field_validator("sections")
    @classmethod
    def validate_sections(cls, value: List[SectionDefinition] | None) -> List[SectionDefinition] | None:
        if value is not None:
            _check_unique_ids(value)
        return value

    def changed_fields(self) -> Dict[str, Any]:
        changes = self.model_dump(exclude_unset=True)
        if "sections" in changes and self.sections is not None:
            changes["sections"] = [section.model_dump(mode="json") for section in self.sections]
        return changes
