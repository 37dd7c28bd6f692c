"""Dashboard listings for admins and assignees."""

from .data import FlowSummary, count_completed_flows, list_flows, list_flows_for_feed, summarise_flow
from .filters import (
    FlowFilters,
    PaginationState,
    clamp_limit,
    clamp_offset,
    normalise_filters,
    validate_sort_field,
    validate_sort_order,
)

__all__ = [
    "FlowFilters",
    "FlowSummary",
    "PaginationState",
    "clamp_limit",
    "clamp_offset",
    "count_completed_flows",
    "list_flows",
    "list_flows_for_feed",
    "normalise_filters",
    "summarise_flow",
    "validate_sort_field",
    "validate_sort_order",
]
