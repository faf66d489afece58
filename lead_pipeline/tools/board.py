"""Board tool implementations: load the Kanban board and move leads."""

from __future__ import annotations

from typing import Any

from lead_pipeline.constants import LEAD_STATUS_LABELS, LEAD_STATUSES
from lead_pipeline.data.store import search_leads
from lead_pipeline.pipeline.board import (
    BoardController,
    BoardFilters,
    TransitionOutcome,
    card_summary,
)
from lead_pipeline.tools.common import build_raw_response


def _render_card(card: dict[str, Any]) -> str:
    parts = [card["name"]]
    if card["duplicate"]:
        parts.append("(possible duplicate)")
    if card["vehicle"]:
        parts.append(f"- {card['vehicle']}")
    extras = [card["age"]]
    if card["assignee"]:
        extras.append(f"@{card['assignee']}")
    if card["estimated_value"]:
        extras.append(card["estimated_value"])
    extras = [e for e in extras if e]
    line = f"  - [{card['id']}] {' '.join(parts)}"
    return f"{line} ({', '.join(extras)})" if extras else line


async def get_pipeline_board_impl(
    board: BoardController,
    *,
    assignee: str = "all",
    search: str = "",
    raw: bool = False,
) -> str:
    """Load the board for the given filters and render its columns."""
    loaded = await board.load(BoardFilters(assignee=assignee or "all", search=search))
    if not loaded:
        return (
            "Could not load leads right now; the board still shows the last "
            f"loaded data. Please retry. ({board.last_error})"
        )

    cards = board.cards()
    if raw:
        return build_raw_response(
            "get_pipeline_board",
            {"filters": {"assignee": assignee, "search": search}, "columns": cards},
        )

    lines = [f"Pipeline board ({len(board.store)} leads):"]
    for status in LEAD_STATUSES:
        column = cards[status]
        lines.append(f"{LEAD_STATUS_LABELS[status]} ({len(column)})")
        lines.extend(_render_card(card) for card in column)
    return "\n".join(lines)


async def move_lead_impl(board: BoardController, *, lead_id: str, status: str) -> str:
    """Move a lead to another column through the optimistic protocol."""
    lead_id = lead_id.strip()
    target = status.strip().upper()
    if not lead_id:
        return "Lead ID is required."
    if target not in LEAD_STATUSES:
        return f"Status must be one of: {', '.join(LEAD_STATUSES)}."

    if board.store.get(lead_id) is None:
        await board.load()
    if board.store.get(lead_id) is None:
        return f"Lead '{lead_id}' is not on the board."

    outcome = await board.transition(lead_id, target)
    lead = board.store.get(lead_id)
    current = LEAD_STATUS_LABELS.get(lead.status, lead.status) if lead else "?"
    if outcome is TransitionOutcome.NOOP:
        return f"Lead '{lead_id}' is already in {current}."
    if outcome is TransitionOutcome.CONFIRMED:
        return f"Lead '{lead_id}' moved to {current}."
    return f"Lead '{lead_id}' stays in {current}."


def search_board_impl(board: BoardController, *, query: str) -> str:
    """Filter the loaded board locally by name, vehicle, or message text."""
    matches = search_leads(board.store.leads, query)
    if not matches:
        return f"No loaded leads match '{query}'."
    now = board.clock()
    lines = [f"{len(matches)} lead(s) match '{query}':"]
    for lead in matches:
        status = LEAD_STATUS_LABELS.get(lead.status, lead.status)
        lines.append(f"{_render_card(card_summary(lead, now))} [{status}]")
    return "\n".join(lines)
