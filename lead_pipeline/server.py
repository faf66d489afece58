"""Lead pipeline MCP server — FastMCP entry point over the pipeline engine."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from lead_pipeline.clients.crm import SHARED_DIRECTORY_CACHE, CrmClient
from lead_pipeline.config import PipelineSettings
from lead_pipeline.models import Lead
from lead_pipeline.pipeline.board import BoardController
from lead_pipeline.pipeline.detail import LeadDetail
from lead_pipeline.pipeline.opportunities import DealerOpportunities
from lead_pipeline.tools.board import (
    get_pipeline_board_impl,
    move_lead_impl,
    search_board_impl,
)
from lead_pipeline.tools.common import log_and_return_tool_error
from lead_pipeline.tools.detail import (
    complete_lead_task_impl,
    create_lead_opportunity_impl,
    create_lead_task_impl,
    delete_lead_opportunity_impl,
    delete_lead_task_impl,
    describe_lead_impl,
    get_lead_timeline_impl,
    list_lead_opportunities_impl,
    list_lead_tasks_impl,
    log_lead_activity_impl,
    update_lead_impl,
    update_lead_opportunity_impl,
)
from lead_pipeline.tools.opportunities import list_dealer_opportunities_impl

# Load .env from project root (no extra dependency)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
if _ENV_FILE.is_file():
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())

mcp = FastMCP("LeadPipeline")
logger = logging.getLogger(__name__)

_board: BoardController | None = None
_details: dict[str, LeadDetail] = {}
_dealer_opportunities: DealerOpportunities | None = None


async def _get_board() -> BoardController:
    """Lazy accessor — builds the board and its API client on first call."""
    global _board  # noqa: PLW0603
    if _board is None:
        settings = PipelineSettings.from_env()
        client = CrmClient(
            settings.api_url, settings.api_token, cache=SHARED_DIRECTORY_CACHE
        )
        await client.open()
        _board = BoardController(client, settings=settings, clock=settings.now)
    return _board


def set_board_override(board: BoardController | None) -> None:
    """Inject a board (e.g. wired to a fake client) for testing."""
    global _board, _dealer_opportunities  # noqa: PLW0603
    if _board is not None and _board is not board:
        _board.close()
    _board = board
    for detail in _details.values():
        detail.close()
    _details.clear()
    _dealer_opportunities = None


async def _get_detail(lead_id: str) -> LeadDetail:
    """Detail view for a lead, keyed by id; edits flow back into the board."""
    lead_id = lead_id.strip()
    if not lead_id:
        raise ValueError("Lead ID is required.")
    board = await _get_board()
    detail = _details.get(lead_id)
    if detail is not None:
        current = board.store.get(lead_id)
        if current is not None:
            detail.sync(current)
        return detail

    lead = board.store.get(lead_id)
    if lead is None:
        lead = Lead.from_payload(await board.client.get_lead(lead_id))
    detail = LeadDetail(
        board.client, lead, on_update=board.apply_lead_update, clock=board.clock
    )
    _details[lead_id] = detail
    return detail


async def _get_dealer_opportunities() -> DealerOpportunities:
    global _dealer_opportunities  # noqa: PLW0603
    if _dealer_opportunities is None:
        board = await _get_board()
        _dealer_opportunities = DealerOpportunities(board.client)
    return _dealer_opportunities


# ── Board tools ─────────────────────────────────────────────────────


@mcp.tool()
async def get_pipeline_board(assignee: str = "all", search: str = "", raw: bool = False) -> str:
    """Load the Kanban lead board.

    assignee: 'all', 'me', 'unassigned', or a team member id
    search: free text matched by the CRM against lead name/contact
    """
    try:
        board = await _get_board()
        return await get_pipeline_board_impl(board, assignee=assignee, search=search, raw=raw)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_pipeline_board",
            exc=exc,
            user_message="I am having trouble loading the lead board right now.",
        )


@mcp.tool()
async def move_lead(lead_id: str, status: str) -> str:
    """Move a lead to another pipeline column (NEW, CONTACTED, QUALIFIED, CONVERTED, LOST)."""
    try:
        board = await _get_board()
        return await move_lead_impl(board, lead_id=lead_id, status=status)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="move_lead",
            exc=exc,
            user_message="I am having trouble moving that lead right now.",
        )


@mcp.tool()
async def search_board(query: str) -> str:
    """Filter the loaded board by lead name, vehicle, brand/model, or message."""
    try:
        board = await _get_board()
        return search_board_impl(board, query=query)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="search_board",
            exc=exc,
            user_message="I am having trouble searching the board right now.",
        )


# ── Lead detail tools ───────────────────────────────────────────────


@mcp.tool()
async def get_lead(lead_id: str) -> str:
    """Show a lead's details."""
    try:
        return describe_lead_impl(await _get_detail(lead_id))
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_lead",
            exc=exc,
            user_message="I am having trouble loading that lead right now.",
        )


@mcp.tool()
async def update_lead(
    lead_id: str,
    status: str = "",
    assigned_to_id: str | None = None,
    notes: str | None = None,
    estimated_value: float | None = None,
) -> str:
    """Edit a lead's status, assignee (empty string unassigns), notes, or estimated value."""
    try:
        detail = await _get_detail(lead_id)
        return await update_lead_impl(
            detail,
            status=status,
            assigned_to_id=assigned_to_id,
            notes=notes,
            estimated_value=estimated_value,
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="update_lead",
            exc=exc,
            user_message="I could not save the lead changes.",
        )


@mcp.tool()
async def get_lead_timeline(lead_id: str, raw: bool = False) -> str:
    """Show the lead's activity timeline, oldest first."""
    try:
        detail = await _get_detail(lead_id)
        await detail.refresh_timeline()
        return await get_lead_timeline_impl(detail, raw=raw)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_lead_timeline",
            exc=exc,
            user_message="I am having trouble loading the activity timeline right now.",
        )


@mcp.tool()
async def log_lead_activity(lead_id: str, activity_type: str, content: str) -> str:
    """Log a NOTE, CALL, EMAIL, or WHATSAPP activity on a lead."""
    try:
        detail = await _get_detail(lead_id)
        return await log_lead_activity_impl(
            detail, activity_type=activity_type, content=content
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="log_lead_activity",
            exc=exc,
            user_message="I could not log that activity.",
        )


@mcp.tool()
async def list_lead_tasks(lead_id: str) -> str:
    """List a lead's pending and completed tasks with due/overdue labels."""
    try:
        detail = await _get_detail(lead_id)
        await detail.refresh_tasks()
        return await list_lead_tasks_impl(detail)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_lead_tasks",
            exc=exc,
            user_message="I am having trouble loading tasks right now.",
        )


@mcp.tool()
async def create_lead_task(
    lead_id: str,
    title: str,
    assigned_to_id: str,
    due_at: str,
    description: str = "",
    priority: str = "MEDIUM",
) -> str:
    """Create a follow-up task. due_at is ISO-8601 and must not be in the past."""
    try:
        detail = await _get_detail(lead_id)
        return await create_lead_task_impl(
            detail,
            title=title,
            assigned_to_id=assigned_to_id,
            due_at=due_at,
            description=description,
            priority=priority,
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="create_lead_task",
            exc=exc,
            user_message="I could not create that task.",
        )


@mcp.tool()
async def complete_lead_task(lead_id: str, task_id: str) -> str:
    """Mark a task completed. Completion cannot be undone."""
    try:
        detail = await _get_detail(lead_id)
        return await complete_lead_task_impl(detail, task_id=task_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="complete_lead_task",
            exc=exc,
            user_message="I could not complete that task.",
        )


@mcp.tool()
async def delete_lead_task(lead_id: str, task_id: str, confirm: bool = False) -> str:
    """Delete a task. Requires confirm=true."""
    try:
        detail = await _get_detail(lead_id)
        return await delete_lead_task_impl(detail, task_id=task_id, confirm=confirm)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="delete_lead_task",
            exc=exc,
            user_message="I could not delete that task.",
        )


@mcp.tool()
async def list_lead_opportunities(lead_id: str, raw: bool = False) -> str:
    """List a lead's sales opportunities with weighted values for open deals."""
    try:
        detail = await _get_detail(lead_id)
        await detail.refresh_opportunities()
        return await list_lead_opportunities_impl(detail, raw=raw)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_lead_opportunities",
            exc=exc,
            user_message="I am having trouble loading opportunities right now.",
        )


@mcp.tool()
async def create_lead_opportunity(
    lead_id: str,
    estimated_value: float,
    probability: int = 50,
    expected_close_date: str = "",
    vehicle_id: str = "",
    notes: str = "",
) -> str:
    """Create an opportunity. estimated_value must be > 0; probability 0-100."""
    try:
        detail = await _get_detail(lead_id)
        return await create_lead_opportunity_impl(
            detail,
            estimated_value=estimated_value,
            probability=probability,
            expected_close_date=expected_close_date,
            vehicle_id=vehicle_id,
            notes=notes,
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="create_lead_opportunity",
            exc=exc,
            user_message="I could not create that opportunity.",
        )


@mcp.tool()
async def update_lead_opportunity(
    lead_id: str,
    opportunity_id: str,
    estimated_value: float | None = None,
    probability: int | None = None,
    status: str = "",
    notes: str | None = None,
) -> str:
    """Update an opportunity's value, probability, status (OPEN/WON/LOST), or notes."""
    fields: dict[str, Any] = {}
    if estimated_value is not None:
        fields["estimated_value"] = estimated_value
    if probability is not None:
        fields["probability"] = probability
    if status:
        fields["status"] = status.strip().upper()
    if notes is not None:
        fields["notes"] = notes
    try:
        detail = await _get_detail(lead_id)
        return await update_lead_opportunity_impl(
            detail, opportunity_id=opportunity_id, fields=fields
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="update_lead_opportunity",
            exc=exc,
            user_message="I could not update that opportunity.",
        )


@mcp.tool()
async def delete_lead_opportunity(lead_id: str, opportunity_id: str, confirm: bool = False) -> str:
    """Delete an opportunity. Requires confirm=true."""
    try:
        detail = await _get_detail(lead_id)
        return await delete_lead_opportunity_impl(
            detail, opportunity_id=opportunity_id, confirm=confirm
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="delete_lead_opportunity",
            exc=exc,
            user_message="I could not delete that opportunity.",
        )


# ── Dealer-wide opportunities ───────────────────────────────────────


@mcp.tool()
async def list_dealer_opportunities(status: str = "all", raw: bool = False) -> str:
    """List opportunities across all leads with pipeline, weighted, and won totals.

    status: 'all', 'OPEN', 'WON', or 'LOST'
    """
    try:
        board = await _get_board()
        tracker = await _get_dealer_opportunities()
        return await list_dealer_opportunities_impl(
            tracker, status=status, now=board.clock(), raw=raw
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_dealer_opportunities",
            exc=exc,
            user_message="I am having trouble loading opportunities right now.",
        )


def main() -> None:
    logging.basicConfig(level=os.environ.get("LEAD_PIPELINE_LOG_LEVEL", "INFO").upper())
    mcp.run()


if __name__ == "__main__":
    main()
