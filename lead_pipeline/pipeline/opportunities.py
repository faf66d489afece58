"""Opportunity Tracker — probability-weighted deal values for a lead, and the
dealer-wide opportunity list with its pipeline totals.

Writes are not optimistic: every create/update/delete is
followed by a full reload of the list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from lead_pipeline.clients.crm import CrmClient, CrmClientError
from lead_pipeline.constants import (
    DEFAULT_OPPORTUNITY_PROBABILITY,
    OPPORTUNITY_FILTER_ALL,
    OPPORTUNITY_FILTERS,
    OPPORTUNITY_STATUS_LABELS,
    OPPORTUNITY_STATUSES,
)
from lead_pipeline.models import FieldValidationError, Opportunity
from lead_pipeline.normalization import format_timestamp

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


def weighted_value(opportunity: Opportunity) -> float | None:
    """``estimated_value * probability / 100`` for open deals, else ``None``."""
    if opportunity.status != "OPEN":
        return None
    return opportunity.estimated_value * opportunity.probability / 100


def validate_opportunity(
    *,
    estimated_value: float | None,
    probability: int | None,
    status: str | None = None,
    partial: bool = False,
) -> None:
    """Raise ``FieldValidationError`` for invalid form fields.

    With ``partial`` (updates), a missing value is not an error.
    """
    errors: dict[str, str] = {}
    if estimated_value is None:
        if not partial:
            errors["estimated_value"] = "Estimated value is required."
    elif estimated_value <= 0:
        errors["estimated_value"] = "Estimated value must be greater than 0."
    if probability is not None and not 0 <= probability <= 100:
        errors["probability"] = "Probability must be between 0 and 100."
    if status is not None and status not in OPPORTUNITY_STATUSES:
        errors["status"] = f"Status must be one of {', '.join(OPPORTUNITY_STATUSES)}."
    if errors:
        raise FieldValidationError(errors)


@dataclass
class PipelineSummary:
    open_value: float = 0.0
    weighted_value: float = 0.0
    won_value: float = 0.0
    counts: dict[str, int] = field(
        default_factory=lambda: {status: 0 for status in OPPORTUNITY_STATUSES}
    )


def summarize_pipeline(opportunities: Iterable[Opportunity]) -> PipelineSummary:
    """Aggregate totals; only OPEN deals contribute to pipeline value."""
    summary = PipelineSummary()
    for opp in opportunities:
        summary.counts[opp.status] = summary.counts.get(opp.status, 0) + 1
        weighted = weighted_value(opp)
        if weighted is not None:
            summary.open_value += opp.estimated_value
            summary.weighted_value += weighted
        elif opp.status == "WON":
            summary.won_value += opp.estimated_value
    return summary


def status_label(status: str) -> str:
    return OPPORTUNITY_STATUS_LABELS.get(status, status)


def _update_body(fields: dict[str, Any]) -> dict[str, Any]:
    mapping = {
        "estimated_value": "estimatedValue",
        "probability": "probability",
        "status": "status",
        "notes": "notes",
        "vehicle_id": "vehicleId",
        "expected_close_date": "expectedCloseDate",
    }
    body: dict[str, Any] = {}
    for key, value in fields.items():
        if key not in mapping:
            raise KeyError(f"Unknown opportunity field: {key}")
        if isinstance(value, datetime):
            value = format_timestamp(value)
        body[mapping[key]] = value
    return body


class OpportunityTracker:
    """Opportunities for one lead."""

    def __init__(self, client: CrmClient, lead_id: str) -> None:
        self._client = client
        self.lead_id = lead_id
        self.opportunities: list[Opportunity] = []
        self.loaded = False
        self.last_error: str | None = None

    def get(self, opportunity_id: str) -> Opportunity | None:
        return next((o for o in self.opportunities if o.id == opportunity_id), None)

    def summary(self) -> PipelineSummary:
        return summarize_pipeline(self.opportunities)

    async def load(self) -> bool:
        """Fetch opportunities; on failure keep the last-known-good list."""
        try:
            payloads = await self._client.list_opportunities(self.lead_id)
        except CrmClientError as exc:
            logger.error(
                "Failed to load opportunities for lead %s: %s", self.lead_id, exc
            )
            self.last_error = str(exc)
            return False
        self.opportunities = [
            Opportunity.from_payload(p, lead_id=self.lead_id) for p in payloads
        ]
        self.loaded = True
        self.last_error = None
        return True

    async def create(
        self,
        *,
        estimated_value: float,
        probability: int = DEFAULT_OPPORTUNITY_PROBABILITY,
        expected_close_date: datetime | None = None,
        vehicle_id: str | None = None,
        notes: str = "",
    ) -> bool:
        validate_opportunity(estimated_value=estimated_value, probability=probability)
        await self._client.create_opportunity(
            self.lead_id,
            {
                "estimatedValue": estimated_value,
                "probability": probability,
                "expectedCloseDate": format_timestamp(expected_close_date),
                "vehicleId": vehicle_id or None,
                "notes": notes.strip() or None,
            },
        )
        return await self.load()

    async def update(self, opportunity_id: str, **fields: Any) -> bool:
        """Patch an opportunity.  Moving out of WON/LOST is not prevented."""
        validate_opportunity(
            estimated_value=fields.get("estimated_value"),
            probability=fields.get("probability"),
            status=fields.get("status"),
            partial=True,
        )
        await self._client.update_opportunity(
            self.lead_id, opportunity_id, _update_body(fields)
        )
        return await self.load()

    async def delete(self, opportunity_id: str, *, confirm: Confirm) -> bool:
        """Delete after explicit confirmation; returns False if declined."""
        if not confirm("Delete this opportunity?"):
            return False
        await self._client.delete_opportunity(self.lead_id, opportunity_id)
        await self.load()
        return True


class DealerOpportunities:
    """Opportunities across all of the dealer's leads, filtered by status.

    Totals come from :func:`summarize_pipeline` over the filtered list, so a
    WON filter shows won value with an empty pipeline.
    """

    def __init__(self, client: CrmClient) -> None:
        self._client = client
        self.status = OPPORTUNITY_FILTER_ALL
        self.opportunities: list[Opportunity] = []
        self.loaded = False
        self.last_error: str | None = None

    def summary(self) -> PipelineSummary:
        return summarize_pipeline(self.opportunities)

    async def load(self, status: str | None = None) -> bool:
        """Fetch with ``status`` (or the current filter); on failure keep the
        last-known-good list and filter."""
        status = self.status if status is None else status
        if status not in OPPORTUNITY_FILTERS:
            raise FieldValidationError(
                {"status": f"Status filter must be one of {', '.join(OPPORTUNITY_FILTERS)}."}
            )
        try:
            payloads = await self._client.list_dealer_opportunities(status=status)
        except CrmClientError as exc:
            logger.error("Failed to load dealer opportunities (%s): %s", status, exc)
            self.last_error = str(exc)
            return False
        self.status = status
        self.opportunities = [Opportunity.from_payload(p) for p in payloads]
        self.loaded = True
        self.last_error = None
        return True
