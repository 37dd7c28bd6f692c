"""Pydantic-based configuration helpers for Action Flows."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to run the Action Flows service."""

    database_url: str = Field(..., alias="DATABASE_URL")
    admin_user_ids: List[str] = Field(..., alias="ADMIN_USER_IDS")
    deadline_warning_days: int = Field(3, alias="DEADLINE_WARNING_DAYS")
    dashboard_limit: int = Field(20, alias="DASHBOARD_LIMIT")

    @field_validator("admin_user_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return [item.strip() for item in value if item.strip()]
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("deadline_warning_days", "dashboard_limit")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Dashboard limits and warning windows must be greater than zero")
        return value


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        message = (
            "Missing required environment variables: "
            f"{_format_missing(missing)}"
        )
        raise RuntimeError(message) from exc
