"""Shared constants used across the pipeline engine.

Single source of truth for statuses, labels, and interaction thresholds.
"""

from __future__ import annotations

# Board order; also the order of Kanban columns.
LEAD_STATUSES: tuple[str, ...] = ("NEW", "CONTACTED", "QUALIFIED", "CONVERTED", "LOST")

LEAD_STATUS_LABELS: dict[str, str] = {
    "NEW": "New",
    "CONTACTED": "Contacted",
    "QUALIFIED": "Qualified",
    "CONVERTED": "Converted",
    "LOST": "Lost",
}

ACTIVITY_TYPES: tuple[str, ...] = (
    "NOTE",
    "CALL",
    "EMAIL",
    "WHATSAPP",
    "STATUS_CHANGE",
    "ASSIGNMENT",
    "TEST_DRIVE",
)

# Types a team member can log by hand; the rest are written by the API.
LOGGABLE_ACTIVITY_TYPES: frozenset[str] = frozenset({"NOTE", "CALL", "EMAIL", "WHATSAPP"})

TASK_PRIORITIES: tuple[str, ...] = ("LOW", "MEDIUM", "HIGH")
DEFAULT_TASK_PRIORITY = "MEDIUM"

TASK_PRIORITY_LABELS: dict[str, str] = {
    "LOW": "Low",
    "MEDIUM": "Medium",
    "HIGH": "High",
}

OPPORTUNITY_STATUSES: tuple[str, ...] = ("OPEN", "WON", "LOST")

OPPORTUNITY_STATUS_LABELS: dict[str, str] = {
    "OPEN": "Open",
    "WON": "Won",
    "LOST": "Lost",
}

# Dealer-wide opportunity list filter values.
OPPORTUNITY_FILTER_ALL = "all"
OPPORTUNITY_FILTERS: tuple[str, ...] = (OPPORTUNITY_FILTER_ALL, *OPPORTUNITY_STATUSES)

DEFAULT_OPPORTUNITY_PROBABILITY = 50

ASSIGNEE_ALL = "all"
ASSIGNEE_ME = "me"
ASSIGNEE_UNASSIGNED = "unassigned"

SEARCH_DEBOUNCE_MS = 300
DRAG_ACTIVATION_DISTANCE_PX = 8

UNASSIGNED_LABEL = "Unassigned"
UNKNOWN_USER_LABEL = "User"
