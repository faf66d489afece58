"""Activity Timeline Synthesizer — turns a lead's activity log into a narrative.

Rendering is pure (``build_timeline``); ``ActivityLog`` adds the fetch and
the hand-logged activity form on top of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from lead_pipeline.clients.crm import CrmClient, CrmClientError
from lead_pipeline.constants import (
    LEAD_STATUS_LABELS,
    LOGGABLE_ACTIVITY_TYPES,
    UNASSIGNED_LABEL,
    UNKNOWN_USER_LABEL,
)
from lead_pipeline.formatting import activity_timestamp
from lead_pipeline.models import (
    Activity,
    AssignmentActivity,
    FieldValidationError,
    StatusChangeActivity,
    parse_activity,
)

logger = logging.getLogger(__name__)

ACTIVITY_VERBS: dict[str, str] = {
    "NOTE": "added a note",
    "CALL": "logged a call",
    "EMAIL": "logged an email",
    "WHATSAPP": "logged a WhatsApp message",
    "STATUS_CHANGE": "changed the status",
    "ASSIGNMENT": "assigned the lead",
    "TEST_DRIVE": "scheduled a test drive",
}
FALLBACK_VERB = "performed an action"


@dataclass(frozen=True)
class TimelineEntry:
    activity_id: str
    activity_type: str
    actor: str
    verb: str
    detail: str | None
    note: str | None
    timestamp: str

    @property
    def headline(self) -> str:
        return f"{self.actor} {self.verb}"


def status_label(status: str | None) -> str:
    """Human label for a lead status; unmapped values pass through raw."""
    if not status:
        return ""
    return LEAD_STATUS_LABELS.get(status, status)


def describe_detail(activity: Activity) -> str | None:
    """Type-specific detail line, or ``None`` when the type has none."""
    if isinstance(activity, StatusChangeActivity):
        if activity.old_status is None and activity.new_status is None:
            return None
        return (
            f"from {status_label(activity.old_status)} "
            f"to {status_label(activity.new_status)}"
        )
    if isinstance(activity, AssignmentActivity):
        return f"to {activity.assigned_to_name or UNASSIGNED_LABEL}"
    return None


def _sort_key(indexed: tuple[int, Activity]) -> tuple[int, float, int]:
    index, activity = indexed
    if activity.created_at is None:
        return (1, 0.0, index)
    return (0, activity.created_at.timestamp(), index)


def build_timeline(activities: list[Activity], now: datetime) -> list[TimelineEntry]:
    """Render activities oldest-first; undated entries keep input order at the end."""
    ordered = [a for _, a in sorted(enumerate(activities), key=_sort_key)]
    entries = []
    for activity in ordered:
        author = activity.author
        entries.append(
            TimelineEntry(
                activity_id=activity.id,
                activity_type=activity.type,
                actor=author.display_name if author else UNKNOWN_USER_LABEL,
                verb=ACTIVITY_VERBS.get(activity.type, FALLBACK_VERB),
                detail=describe_detail(activity),
                note=activity.content,
                timestamp=activity_timestamp(activity.created_at, now),
            )
        )
    return entries


def render_timeline_text(entries: list[TimelineEntry]) -> str:
    if not entries:
        return "No activity recorded."
    lines: list[str] = []
    for entry in entries:
        stamp = f"[{entry.timestamp}] " if entry.timestamp else ""
        lines.append(f"{stamp}{entry.headline}")
        if entry.detail:
            lines.append(f"    {entry.detail}")
        if entry.note:
            lines.append(f'    "{entry.note}"')
    return "\n".join(lines)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLog:
    """A lead's activity feed: fetch, render, and hand-log entries."""

    def __init__(
        self,
        client: CrmClient,
        lead_id: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self.lead_id = lead_id
        self._clock = clock
        self.activities: list[Activity] = []
        self.loaded = False
        self.last_error: str | None = None

    async def load(self) -> bool:
        """Fetch activities; on failure keep the last-known-good list."""
        try:
            payloads = await self._client.list_activities(self.lead_id)
        except CrmClientError as exc:
            logger.error("Failed to load activities for lead %s: %s", self.lead_id, exc)
            self.last_error = str(exc)
            return False
        self.activities = [parse_activity(p, lead_id=self.lead_id) for p in payloads]
        self.loaded = True
        self.last_error = None
        return True

    def entries(self) -> list[TimelineEntry]:
        return build_timeline(self.activities, self._clock())

    async def log(self, activity_type: str, content: str) -> Activity:
        """Record a NOTE/CALL/EMAIL/WHATSAPP entry, then reload the feed."""
        normalized_type = activity_type.strip().upper()
        text = content.strip()
        errors: dict[str, str] = {}
        if normalized_type not in LOGGABLE_ACTIVITY_TYPES:
            errors["type"] = (
                f"Activity type must be one of {', '.join(sorted(LOGGABLE_ACTIVITY_TYPES))}."
            )
        if not text:
            errors["content"] = "Content is required."
        if errors:
            raise FieldValidationError(errors)

        payload = await self._client.create_activity(self.lead_id, normalized_type, text)
        await self.load()
        return parse_activity(payload, lead_id=self.lead_id)
