"""Lead Detail Aggregator — one selected lead with its timeline, tasks, and
opportunities, plus direct edits of the lead itself.

Edits are not optimistic: the local lead changes only after the API returns
its updated representation.  Failures propagate as ``CrmClientError`` so the
caller can show a message.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from lead_pipeline.clients.crm import CrmClient
from lead_pipeline.constants import LEAD_STATUSES
from lead_pipeline.models import FieldValidationError, Lead
from lead_pipeline.pipeline.opportunities import OpportunityTracker
from lead_pipeline.pipeline.tasks import TaskScheduler
from lead_pipeline.pipeline.timeline import ActivityLog

logger = logging.getLogger(__name__)

LeadCallback = Callable[[Lead], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _noop(_lead: Lead) -> None:
    return None


class LeadDetail:
    """Detail view for the selected lead; sub-views load on first use."""

    def __init__(
        self,
        client: CrmClient,
        lead: Lead,
        *,
        on_update: LeadCallback = _noop,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self.lead = lead
        self._on_update = on_update
        self._clock = clock
        self.closed = False
        self._activity_log: ActivityLog | None = None
        self._tasks: TaskScheduler | None = None
        self._opportunities: OpportunityTracker | None = None

    @property
    def lead_id(self) -> str:
        return self.lead.id

    def now(self) -> datetime:
        return self._clock()

    # Lazily loaded sub-views

    async def timeline(self) -> ActivityLog:
        if self._activity_log is None:
            self._activity_log = ActivityLog(self._client, self.lead_id, clock=self._clock)
            await self._activity_log.load()
        return self._activity_log

    async def tasks(self) -> TaskScheduler:
        if self._tasks is None:
            self._tasks = TaskScheduler(self._client, self.lead_id, clock=self._clock)
            await self._tasks.load()
        return self._tasks

    async def opportunities(self) -> OpportunityTracker:
        if self._opportunities is None:
            self._opportunities = OpportunityTracker(self._client, self.lead_id)
            await self._opportunities.load()
        return self._opportunities

    async def refresh_timeline(self) -> bool:
        if self._activity_log is None:
            return False
        return await self._activity_log.load()

    async def refresh_tasks(self) -> bool:
        if self._tasks is None:
            return False
        return await self._tasks.load()

    async def refresh_opportunities(self) -> bool:
        if self._opportunities is None:
            return False
        return await self._opportunities.load()

    def sync(self, lead: Lead) -> None:
        """Adopt a newer copy of the lead, e.g. after a board move."""
        if self.closed or lead.id != self.lead_id:
            return
        self.lead = lead

    # Direct edits

    def _accept(self, payload: dict[str, Any]) -> Lead | None:
        if self.closed:
            logger.debug("Ignoring update for lead %s received after close", self.lead_id)
            return None
        self.lead = Lead.from_payload(payload)
        self._on_update(self.lead)
        return self.lead

    async def _patch(self, fields: dict[str, Any]) -> Lead | None:
        payload = await self._client.update_lead(self.lead_id, fields)
        return self._accept(payload)

    async def change_status(self, status: str) -> Lead | None:
        if status not in LEAD_STATUSES:
            raise FieldValidationError(
                {"status": f"Status must be one of {', '.join(LEAD_STATUSES)}."}
            )
        if status == self.lead.status:
            return self.lead
        updated = await self._patch({"status": status})
        if updated is not None:
            await self.refresh_timeline()
        return updated

    async def assign(self, member_id: str | None) -> Lead | None:
        """Assign to a team member, or unassign with ``None``."""
        current = self.lead.assigned_to.id if self.lead.assigned_to else None
        if member_id == current:
            return self.lead
        updated = await self._patch({"assignedToId": member_id})
        if updated is not None:
            await self.refresh_timeline()
        return updated

    async def save_details(
        self,
        *,
        notes: str | None,
        estimated_value: float | None,
    ) -> Lead | None:
        """Save notes and estimated value.  Blank notes and a ``None`` value clear
        the field; an explicit 0 is kept."""
        if estimated_value is not None and estimated_value < 0:
            raise FieldValidationError(
                {"estimated_value": "Estimated value cannot be negative."}
            )
        return await self._patch({
            "notes": notes or None,
            "estimatedValue": estimated_value,
        })

    async def refresh_lead(self) -> Lead | None:
        """Re-read the lead, e.g. after the API changed it as a side effect."""
        payload = await self._client.get_lead(self.lead_id)
        return self._accept(payload)

    async def update_opportunity(self, opportunity_id: str, **fields: Any) -> bool:
        """Update an opportunity; WON/LOST can move the lead server-side, so
        the lead is re-read afterwards."""
        tracker = await self.opportunities()
        reloaded = await tracker.update(opportunity_id, **fields)
        if fields.get("status") in {"WON", "LOST"}:
            await self.refresh_lead()
        return reloaded

    def close(self) -> None:
        self.closed = True
