"""Opportunity renderers and the dealer-wide opportunity list tool."""

from __future__ import annotations

from datetime import datetime

from lead_pipeline.constants import OPPORTUNITY_FILTER_ALL
from lead_pipeline.formatting import format_amount, full_date
from lead_pipeline.models import Opportunity
from lead_pipeline.pipeline.opportunities import (
    DealerOpportunities,
    PipelineSummary,
    status_label,
    weighted_value,
)
from lead_pipeline.tools.common import build_raw_response


def render_summary(summary: PipelineSummary) -> str:
    return (
        f"Pipeline {format_amount(summary.open_value)} "
        f"(weighted {format_amount(summary.weighted_value)}), "
        f"won {format_amount(summary.won_value)}"
    )


def render_opportunity(
    opp: Opportunity, now: datetime, *, show_lead: bool = False
) -> list[str]:
    head = (
        f"- [{opp.id}] {status_label(opp.status)} | {format_amount(opp.estimated_value)}"
        f" | {opp.probability}% probability"
    )
    weighted = weighted_value(opp)
    if weighted is not None:
        head += f" | weighted {format_amount(weighted)}"
    lines = [head]
    if show_lead:
        lines.append(f"    Lead: {opp.lead_name or opp.lead_id} [{opp.lead_id}]")
    if opp.vehicle:
        lines.append(f"    Vehicle: {opp.vehicle.title}")
    if opp.expected_close_date and opp.status == "OPEN":
        lines.append(f"    Expected close: {full_date(opp.expected_close_date, now)}")
    if opp.notes:
        lines.append(f"    {opp.notes}")
    return lines


async def list_dealer_opportunities_impl(
    tracker: DealerOpportunities,
    *,
    status: str = OPPORTUNITY_FILTER_ALL,
    now: datetime,
    raw: bool = False,
) -> str:
    """Load the dealer-wide list with a status filter and render it with totals."""
    status = status.strip()
    if status.lower() == OPPORTUNITY_FILTER_ALL:
        status = OPPORTUNITY_FILTER_ALL
    else:
        status = status.upper()
    loaded = await tracker.load(status)
    summary = tracker.summary()
    if raw:
        return build_raw_response(
            "list_dealer_opportunities",
            {
                "status": tracker.status,
                "opportunities": [
                    {**vars(o), "weighted_value": weighted_value(o)}
                    for o in tracker.opportunities
                ],
                "summary": vars(summary),
                "error": tracker.last_error,
            },
        )

    lines: list[str] = []
    if not loaded:
        if not tracker.loaded:
            return f"Could not load opportunities: {tracker.last_error}"
        lines.append(
            f"(Could not refresh opportunities: {tracker.last_error}. "
            f"Showing the last loaded '{tracker.status}' list.)"
        )
    if not tracker.opportunities:
        lines.append("No opportunities match this filter.")
        return "\n".join(lines)

    lines.append(render_summary(summary))
    lines.append(f"{len(tracker.opportunities)} opportunities ({tracker.status}):")
    for opp in tracker.opportunities:
        lines.extend(render_opportunity(opp, now, show_lead=True))
    return "\n".join(lines)
