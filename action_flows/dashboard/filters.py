"""Input validation helpers for dashboard filters and sorting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from action_flows.flows.status import COMPLETED, DRAFT, IN_PROGRESS

VALID_SORT_FIELDS = {"created_at", "title", "status", "deadline"}
VALID_SORT_ORDERS = {"asc", "desc"}

_STATUS_ALIASES = {
    "draft": DRAFT,
    "not started": DRAFT,
    "in progress": IN_PROGRESS,
    "completed": COMPLETED,
}


def _clean_statuses(values: Sequence[str] | Iterable[str] | None) -> list[str] | None:
    """Normalise display or stored status names, dropping unknown ones."""

    if values is None:
        return None

    cleaned: list[str] = []
    for value in values:
        if value is None:
            continue
        item = str(value).strip()
        if not item:
            continue
        status = _STATUS_ALIASES.get(item.lower())
        if status is not None and status not in cleaned:
            cleaned.append(status)
    return cleaned or None


@dataclass(frozen=True)
class FlowFilters:
    statuses: list[str] | None
    assignee_id: str | None
    sort_by: str
    sort_order: str
    limit: int
    offset: int


@dataclass(frozen=True)
class PaginationState:
    offset: int = 0
    limit: int = 20
    has_previous: bool = False
    has_more: bool = False


def clamp_limit(value: int | str | None, *, default: int, minimum: int = 1, maximum: int = 50) -> int:
    if value is None:
        return default

    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return default

    return max(minimum, min(maximum, numeric))


def clamp_offset(value: int | str | None) -> int:
    if value is None:
        return 0

    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return 0

    return max(0, numeric)


def validate_sort_field(value: str | None, *, default: str = "created_at") -> str:
    candidate = (value or "").strip().lower()
    if candidate in VALID_SORT_FIELDS:
        return candidate
    return default


def validate_sort_order(value: str | None, *, default: str = "desc") -> str:
    candidate = (value or "").strip().lower()
    if candidate in VALID_SORT_ORDERS:
        return candidate
    return default


def normalise_filters(
    *,
    statuses: Sequence[str] | Iterable[str] | None = None,
    assignee_id: str | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
    limit: int | str | None = None,
    offset: int | str | None = None,
    default_limit: int = 20,
) -> FlowFilters:
    sort_field = validate_sort_field(sort_by)
    ascending_default = sort_field in {"title", "deadline"}
    return FlowFilters(
        statuses=_clean_statuses(statuses),
        assignee_id=(assignee_id or "").strip() or None,
        sort_by=sort_field,
        sort_order=validate_sort_order(sort_order, default="asc" if ascending_default else "desc"),
        limit=clamp_limit(limit, default=default_limit),
        offset=clamp_offset(offset),
    )
