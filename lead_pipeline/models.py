"""Lead pipeline data model — immutable records parsed from API payloads.

The collaborator API speaks camelCase JSON; everything here is snake_case
and immutable.  Parsers never raise on malformed optional fields: bad
timestamps, amounts, or metadata degrade to ``None``/empty values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lead_pipeline.constants import DEFAULT_TASK_PRIORITY, UNKNOWN_USER_LABEL
from lead_pipeline.normalization import (
    parse_amount,
    parse_int,
    parse_text,
    parse_timestamp,
)


class FieldValidationError(ValueError):
    """Raised before a request is issued when form fields are invalid."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{name}: {msg}" for name, msg in errors.items()))
        self.errors = errors


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


@dataclass(frozen=True)
class TeamMember:
    id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or UNKNOWN_USER_LABEL

    @property
    def first_name(self) -> str:
        return self.display_name.split(" ")[0]

    @classmethod
    def from_payload(cls, payload: Any) -> TeamMember | None:
        data = _as_dict(payload)
        member_id = data.get("id")
        if not member_id:
            return None
        return cls(id=str(member_id), name=parse_text(data.get("name")))


@dataclass(frozen=True)
class VehicleRef:
    id: str
    title: str = ""
    slug: str | None = None
    brand: str | None = None
    model: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> VehicleRef | None:
        data = _as_dict(payload)
        vehicle_id = data.get("id")
        if not vehicle_id:
            return None
        brand = data.get("brand")
        model = data.get("model")
        # Nested {"brand": {"name": ...}} shapes are accepted too.
        if isinstance(brand, dict):
            brand = brand.get("name")
        if isinstance(model, dict):
            model = model.get("name")
        return cls(
            id=str(vehicle_id),
            title=_as_str(data.get("title")),
            slug=parse_text(data.get("slug")),
            brand=parse_text(brand),
            model=parse_text(model),
        )


@dataclass(frozen=True)
class Lead:
    """Root aggregate of the pipeline; ``status`` decides the board column."""

    id: str
    name: str
    email: str
    message: str
    status: str
    source: str
    created_at: datetime | None
    is_duplicate: bool = False
    phone: str | None = None
    estimated_value: float | None = None
    last_contact_at: datetime | None = None
    next_follow_up: datetime | None = None
    notes: str | None = None
    assigned_to: TeamMember | None = None
    vehicle: VehicleRef | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Lead:
        return cls(
            id=str(payload["id"]),
            name=_as_str(payload.get("name")),
            email=_as_str(payload.get("email")),
            message=_as_str(payload.get("message")),
            status=_as_str(payload.get("status")),
            source=_as_str(payload.get("source")),
            created_at=parse_timestamp(payload.get("createdAt")),
            is_duplicate=bool(payload.get("isDuplicate", False)),
            phone=parse_text(payload.get("phone")),
            estimated_value=parse_amount(payload.get("estimatedValue")),
            last_contact_at=parse_timestamp(payload.get("lastContactAt")),
            next_follow_up=parse_timestamp(payload.get("nextFollowUp")),
            notes=payload.get("notes") if isinstance(payload.get("notes"), str) else None,
            assigned_to=TeamMember.from_payload(payload.get("assignedTo")),
            vehicle=VehicleRef.from_payload(payload.get("vehicle")),
        )


# ── Activities (tagged union keyed by ``type``) ──────────────────────


@dataclass(frozen=True)
class Activity:
    """Base activity record.  Use :func:`parse_activity` to build one."""

    id: str
    lead_id: str
    type: str
    created_at: datetime | None
    author: TeamMember | None
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoteActivity(Activity):
    pass


@dataclass(frozen=True)
class CallActivity(Activity):
    pass


@dataclass(frozen=True)
class EmailActivity(Activity):
    pass


@dataclass(frozen=True)
class WhatsAppActivity(Activity):
    pass


@dataclass(frozen=True)
class TestDriveActivity(Activity):
    pass


@dataclass(frozen=True)
class StatusChangeActivity(Activity):
    old_status: str | None = None
    new_status: str | None = None


@dataclass(frozen=True)
class AssignmentActivity(Activity):
    old_assignee_id: str | None = None
    new_assignee_id: str | None = None
    assigned_to_name: str | None = None


ACTIVITY_CLASSES: dict[str, type[Activity]] = {
    "NOTE": NoteActivity,
    "CALL": CallActivity,
    "EMAIL": EmailActivity,
    "WHATSAPP": WhatsAppActivity,
    "TEST_DRIVE": TestDriveActivity,
    "STATUS_CHANGE": StatusChangeActivity,
    "ASSIGNMENT": AssignmentActivity,
}


def _optional_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def parse_activity(payload: dict[str, Any], *, lead_id: str = "") -> Activity:
    """Build the activity variant matching ``payload["type"]``.

    Unknown types fall back to the base :class:`Activity`; metadata that is
    missing or not an object yields empty variant fields.
    """
    activity_type = _as_str(payload.get("type")).upper()
    metadata = _as_dict(payload.get("metadata"))
    common: dict[str, Any] = {
        "id": _as_str(payload.get("id")),
        "lead_id": _as_str(payload.get("leadId"), lead_id),
        "type": activity_type,
        "created_at": parse_timestamp(payload.get("createdAt")),
        "author": TeamMember.from_payload(payload.get("user") or payload.get("author")),
        "content": parse_text(payload.get("content")),
        "metadata": dict(metadata),
    }

    cls = ACTIVITY_CLASSES.get(activity_type, Activity)
    if cls is StatusChangeActivity:
        return StatusChangeActivity(
            **common,
            old_status=_optional_str(metadata.get("oldStatus")),
            new_status=_optional_str(metadata.get("newStatus")),
        )
    if cls is AssignmentActivity:
        return AssignmentActivity(
            **common,
            old_assignee_id=_optional_str(metadata.get("oldAssigneeId")),
            new_assignee_id=_optional_str(metadata.get("newAssigneeId")),
            assigned_to_name=_optional_str(metadata.get("assignedToName")),
        )
    return cls(**common)


# ── Tasks & opportunities ────────────────────────────────────────────


@dataclass(frozen=True)
class Task:
    id: str
    lead_id: str
    title: str
    due_at: datetime | None
    assigned_to: TeamMember | None
    description: str | None = None
    completed_at: datetime | None = None
    priority: str = DEFAULT_TASK_PRIORITY

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, lead_id: str = "") -> Task:
        priority = _as_str(payload.get("priority"), DEFAULT_TASK_PRIORITY).upper()
        return cls(
            id=_as_str(payload.get("id")),
            lead_id=_as_str(payload.get("leadId"), lead_id),
            title=_as_str(payload.get("title")),
            due_at=parse_timestamp(payload.get("dueAt")),
            assigned_to=TeamMember.from_payload(payload.get("assignedTo")),
            description=parse_text(payload.get("description")),
            completed_at=parse_timestamp(payload.get("completedAt")),
            priority=priority or DEFAULT_TASK_PRIORITY,
        )


@dataclass(frozen=True)
class Opportunity:
    id: str
    lead_id: str
    estimated_value: float
    probability: int
    status: str
    expected_close_date: datetime | None = None
    notes: str | None = None
    vehicle: VehicleRef | None = None
    lead_name: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, lead_id: str = "") -> Opportunity:
        # Dealer-wide listings embed the owning lead as {"id", "name"}.
        lead = _as_dict(payload.get("lead"))
        return cls(
            id=_as_str(payload.get("id")),
            lead_id=_as_str(payload.get("leadId") or lead.get("id"), lead_id),
            estimated_value=parse_amount(payload.get("estimatedValue")) or 0.0,
            probability=parse_int(payload.get("probability")) or 0,
            status=_as_str(payload.get("status"), "OPEN").upper(),
            expected_close_date=parse_timestamp(payload.get("expectedCloseDate")),
            notes=parse_text(payload.get("notes")),
            vehicle=VehicleRef.from_payload(payload.get("vehicle")),
            lead_name=parse_text(lead.get("name")),
        )
