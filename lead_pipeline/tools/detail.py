"""Lead detail tool implementations: timeline, tasks, opportunities, edits."""

from __future__ import annotations

from typing import Any

from lead_pipeline.constants import LEAD_STATUS_LABELS, UNASSIGNED_LABEL
from lead_pipeline.formatting import format_amount, full_date
from lead_pipeline.normalization import parse_timestamp
from lead_pipeline.pipeline.detail import LeadDetail
from lead_pipeline.pipeline.opportunities import weighted_value
from lead_pipeline.pipeline.timeline import render_timeline_text
from lead_pipeline.tools.common import build_raw_response
from lead_pipeline.tools.opportunities import render_opportunity, render_summary


def describe_lead_impl(detail: LeadDetail) -> str:
    """Summarize the lead's own fields."""
    lead = detail.lead
    now = detail.now()
    lines = [
        f"{lead.name} [{lead.id}]" + (" (possible duplicate)" if lead.is_duplicate else ""),
        f"Status: {LEAD_STATUS_LABELS.get(lead.status, lead.status)}",
        f"Assigned to: {lead.assigned_to.display_name if lead.assigned_to else UNASSIGNED_LABEL}",
        f"Contact: {lead.email}" + (f", {lead.phone}" if lead.phone else ""),
    ]
    if lead.vehicle:
        lines.append(f"Vehicle: {lead.vehicle.title}")
    lines.append(f"Message: {lead.message}")
    if lead.estimated_value is not None:
        lines.append(f"Estimated value: {format_amount(lead.estimated_value)}")
    if lead.notes:
        lines.append(f"Notes: {lead.notes}")
    if lead.created_at:
        lines.append(f"Created: {full_date(lead.created_at, now)}")
    if lead.last_contact_at:
        lines.append(f"Last contact: {full_date(lead.last_contact_at, now)}")
    if lead.next_follow_up:
        lines.append(f"Next follow-up: {full_date(lead.next_follow_up, now)}")
    return "\n".join(lines)


async def get_lead_timeline_impl(detail: LeadDetail, *, raw: bool = False) -> str:
    log = await detail.timeline()
    entries = log.entries()
    if raw:
        return build_raw_response(
            "get_lead_timeline",
            {"lead_id": detail.lead_id, "entries": [vars(e) for e in entries]},
        )
    text = render_timeline_text(entries)
    if log.last_error:
        text += f"\n(Could not refresh activity: {log.last_error}. Showing last loaded entries.)"
    return text


async def log_lead_activity_impl(
    detail: LeadDetail, *, activity_type: str, content: str
) -> str:
    log = await detail.timeline()
    activity = await log.log(activity_type, content)
    return f"Logged {activity.type.lower()} on lead '{detail.lead_id}'."


async def list_lead_tasks_impl(detail: LeadDetail) -> str:
    scheduler = await detail.tasks()
    pending, completed = scheduler.views()
    if not pending and not completed:
        return "No tasks for this lead."

    lines: list[str] = []
    if pending:
        lines.append(f"Pending ({len(pending)}):")
        for view in pending:
            due = f"Overdue: {view.due_label}" if view.overdue else view.due_label
            lines.append(
                f"- [{view.task_id}] {view.title} | {due} | {view.assignee} | {view.priority_label}"
            )
            if view.description:
                lines.append(f"    {view.description}")
    if completed:
        lines.append(f"Completed ({len(completed)}):")
        for view in completed:
            lines.append(f"- [{view.task_id}] {view.title} | completed {view.completed_label}")
    return "\n".join(lines)


async def create_lead_task_impl(
    detail: LeadDetail,
    *,
    title: str,
    assigned_to_id: str,
    due_at: str,
    description: str = "",
    priority: str = "MEDIUM",
) -> str:
    scheduler = await detail.tasks()
    task = await scheduler.create(
        title=title,
        assigned_to_id=assigned_to_id,
        due_at=parse_timestamp(due_at),
        description=description,
        priority=priority,
    )
    return f"Created task '{task.title}' ({task.id})."


async def complete_lead_task_impl(detail: LeadDetail, *, task_id: str) -> str:
    scheduler = await detail.tasks()
    task = await scheduler.complete(task_id)
    if task is None:
        return f"Task '{task_id}' not found."
    return f"Task '{task.title}' marked completed."


async def delete_lead_task_impl(
    detail: LeadDetail, *, task_id: str, confirm: bool = False
) -> str:
    scheduler = await detail.tasks()
    deleted = await scheduler.delete(task_id, confirm=lambda _prompt: confirm)
    if not deleted:
        return "Deletion not confirmed; pass confirm=true to delete the task."
    return f"Task '{task_id}' deleted."


async def list_lead_opportunities_impl(detail: LeadDetail, *, raw: bool = False) -> str:
    tracker = await detail.opportunities()
    summary = tracker.summary()
    if raw:
        return build_raw_response(
            "list_lead_opportunities",
            {
                "lead_id": detail.lead_id,
                "opportunities": [
                    {**vars(o), "weighted_value": weighted_value(o)}
                    for o in tracker.opportunities
                ],
                "summary": vars(summary),
            },
        )
    if not tracker.opportunities:
        return "No opportunities for this lead."

    lines = [render_summary(summary)]
    for opp in tracker.opportunities:
        lines.extend(render_opportunity(opp, detail.now()))
    return "\n".join(lines)


async def create_lead_opportunity_impl(
    detail: LeadDetail,
    *,
    estimated_value: float,
    probability: int = 50,
    expected_close_date: str = "",
    vehicle_id: str = "",
    notes: str = "",
) -> str:
    tracker = await detail.opportunities()
    await tracker.create(
        estimated_value=estimated_value,
        probability=probability,
        expected_close_date=parse_timestamp(expected_close_date),
        vehicle_id=vehicle_id or None,
        notes=notes,
    )
    return f"Opportunity created for lead '{detail.lead_id}'."


async def update_lead_opportunity_impl(
    detail: LeadDetail,
    *,
    opportunity_id: str,
    fields: dict[str, Any],
) -> str:
    if not fields:
        return "Nothing to update."
    await detail.update_opportunity(opportunity_id, **fields)
    return f"Opportunity '{opportunity_id}' updated."


async def delete_lead_opportunity_impl(
    detail: LeadDetail, *, opportunity_id: str, confirm: bool = False
) -> str:
    tracker = await detail.opportunities()
    deleted = await tracker.delete(opportunity_id, confirm=lambda _prompt: confirm)
    if not deleted:
        return "Deletion not confirmed; pass confirm=true to delete the opportunity."
    return f"Opportunity '{opportunity_id}' deleted."


async def update_lead_impl(
    detail: LeadDetail,
    *,
    status: str = "",
    assigned_to_id: str | None = None,
    notes: str | None = None,
    estimated_value: float | None = None,
) -> str:
    """Apply direct edits; the lead is replaced by the API's response."""
    changed: list[str] = []
    if status:
        await detail.change_status(status.strip().upper())
        changed.append("status")
    if assigned_to_id is not None:
        await detail.assign(assigned_to_id.strip() or None)
        changed.append("assignment")
    if notes is not None or estimated_value is not None:
        await detail.save_details(
            notes=notes if notes is not None else detail.lead.notes,
            estimated_value=(
                estimated_value if estimated_value is not None else detail.lead.estimated_value
            ),
        )
        changed.append("details")
    if not changed:
        return "Nothing to update."
    return f"Updated {', '.join(changed)}.\n{describe_lead_impl(detail)}"
