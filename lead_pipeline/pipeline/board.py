"""Pipeline Board Controller — filtered loading, drag sessions, and the
optimistic status-transition protocol over the Lead Store.

Transition protocol (``BoardController.transition``):

1. no-op when the target equals the current status;
2. capture the previous status;
3. apply the target to the store immediately;
4. send the confirm PATCH;
5. on success leave the store alone (the API logs the activity);
6. on any failure reset the status to the captured previous value.

Step 6 is unconditional: a late failure of an earlier move overwrites a
newer move that is still pending.  Failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from lead_pipeline.clients.crm import CrmClient, CrmClientError
from lead_pipeline.config import PipelineSettings
from lead_pipeline.constants import (
    ASSIGNEE_ALL,
    ASSIGNEE_ME,
    ASSIGNEE_UNASSIGNED,
    LEAD_STATUS_LABELS,
    LEAD_STATUSES,
)
from lead_pipeline.data.store import LeadStore
from lead_pipeline.formatting import format_amount, time_ago
from lead_pipeline.models import Lead, TeamMember

logger = logging.getLogger(__name__)


class TransitionOutcome(enum.Enum):
    NOOP = "noop"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    IGNORED = "ignored"


@dataclass(frozen=True)
class BoardFilters:
    assignee: str = ASSIGNEE_ALL
    search: str = ""


@dataclass(frozen=True)
class BoardColumn:
    status: str
    label: str
    leads: list[Lead] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.leads)


# ── Debounced search ────────────────────────────────────────────────


class SearchDebouncer:
    """Coalesce rapid calls into one callback per quiet period."""

    def __init__(self, delay_ms: int, callback: Callable[[], Awaitable[Any]]) -> None:
        self._delay = delay_ms / 1000
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[Any] | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """(Re)start the quiet-period timer."""
        if self._handle is not None:
            logger.debug("Coalescing search input")
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._callback())

    async def flush(self) -> None:
        """Wait for a fired callback to finish (used at shutdown and in tests)."""
        if self._task is not None:
            await self._task

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


# ── Drag gesture ────────────────────────────────────────────────────


@dataclass
class DragSession:
    lead_id: str
    origin: tuple[float, float]
    active: bool = False


@dataclass(frozen=True)
class DragRelease:
    """What a pointer release resolved to."""

    kind: str  # "select", "drop", or "cancel"
    lead_id: str
    target_status: str | None = None


class DragTracker:
    """Turns pointer events into either a selection or a drop.

    A session becomes a drag only once the pointer has moved at least
    ``threshold_px`` from where it was pressed.
    """

    def __init__(self, threshold_px: float) -> None:
        self.threshold_px = threshold_px
        self.session: DragSession | None = None

    def press(self, lead_id: str, x: float, y: float) -> None:
        self.session = DragSession(lead_id=lead_id, origin=(x, y))

    def move(self, x: float, y: float) -> bool:
        """Return True when this move activated the drag."""
        session = self.session
        if session is None or session.active:
            return False
        ox, oy = session.origin
        if math.hypot(x - ox, y - oy) >= self.threshold_px:
            session.active = True
            return True
        return False

    def release(self, over_status: str | None) -> DragRelease | None:
        session, self.session = self.session, None
        if session is None:
            return None
        if not session.active:
            return DragRelease("select", session.lead_id)
        if over_status is None:
            return DragRelease("cancel", session.lead_id)
        return DragRelease("drop", session.lead_id, over_status)


# ── Card rendering ──────────────────────────────────────────────────


def card_summary(lead: Lead, now: datetime) -> dict[str, Any]:
    """Flat view of a board card."""
    return {
        "id": lead.id,
        "name": lead.name,
        "duplicate": lead.is_duplicate,
        "vehicle": lead.vehicle.title if lead.vehicle else None,
        "email": lead.email,
        "phone": lead.phone,
        "age": time_ago(lead.created_at, now),
        "assignee": lead.assigned_to.first_name if lead.assigned_to else None,
        "estimated_value": format_amount(lead.estimated_value) or None,
    }


# ── Controller ──────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BoardController:
    """Owns the board's Lead Store and every write that reaches it."""

    def __init__(
        self,
        client: CrmClient,
        *,
        settings: PipelineSettings | None = None,
        store: LeadStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = settings or PipelineSettings()
        self._client = client
        self.store = store or LeadStore()
        self.filters = BoardFilters()
        self.team_members: list[TeamMember] = []
        self.last_error: str | None = None
        self.loading = False
        self.closed = False
        self.drag = DragTracker(settings.drag_threshold_px)
        self.active_drag_id: str | None = None
        self._clock = clock
        self._debouncer = SearchDebouncer(settings.search_debounce_ms, self.reload)
        self._inflight: set[asyncio.Task[TransitionOutcome]] = set()

    @property
    def client(self) -> CrmClient:
        return self._client

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    # Loading

    async def load(self, filters: BoardFilters | None = None) -> bool:
        """Fetch leads for ``filters``; the store is replaced only on success."""
        if filters is not None:
            self.filters = filters
        requested = self.filters
        self.loading = True
        try:
            payloads = await self._client.list_leads(
                assigned_to=requested.assignee, search=requested.search
            )
            leads = [Lead.from_payload(p) for p in payloads]
        except (CrmClientError, KeyError) as exc:
            logger.error("Failed to load leads (%s): %s", requested, exc)
            if not self.closed:
                self.last_error = str(exc)
            return False
        finally:
            self.loading = False

        if self.closed:
            logger.debug("Ignoring lead list received after close")
            return False
        self.store.reset(leads)
        self.last_error = None
        return True

    async def reload(self) -> bool:
        return await self.load()

    def set_search(self, text: str) -> None:
        """Update the search text; the reload is debounced."""
        self.filters = BoardFilters(assignee=self.filters.assignee, search=text)
        if not self.closed:
            self._debouncer.trigger()

    async def set_assignee(self, assignee: str) -> bool:
        return await self.load(BoardFilters(assignee=assignee, search=self.filters.search))

    async def flush_search(self) -> None:
        await self._debouncer.flush()

    async def load_team_members(self) -> bool:
        try:
            payloads = await self._client.list_team_members()
        except CrmClientError as exc:
            logger.error("Failed to load team members: %s", exc)
            return False
        members = [TeamMember.from_payload(p) for p in payloads]
        self.team_members = [m for m in members if m is not None]
        return True

    def assignee_options(self) -> list[tuple[str, str]]:
        """(value, label) pairs for the assignee filter."""
        options = [
            (ASSIGNEE_ALL, "All"),
            (ASSIGNEE_ME, "My leads"),
            (ASSIGNEE_UNASSIGNED, "Unassigned"),
        ]
        options.extend((m.id, m.name or "No name") for m in self.team_members)
        return options

    # Board view

    def columns(self) -> list[BoardColumn]:
        grouped = self.store.group_by_status()
        return [
            BoardColumn(status=status, label=LEAD_STATUS_LABELS[status], leads=grouped[status])
            for status in LEAD_STATUSES
        ]

    def cards(self) -> dict[str, list[dict[str, Any]]]:
        now = self._clock()
        return {
            column.status: [card_summary(lead, now) for lead in column.leads]
            for column in self.columns()
        }

    # Drag sessions

    def begin_drag(self, lead_id: str) -> Lead | None:
        """Start the (single) drag session; returns the dragged lead for the overlay."""
        lead = self.store.get(lead_id)
        self.active_drag_id = lead_id if lead is not None else None
        return lead

    def end_drag(self) -> str | None:
        lead_id, self.active_drag_id = self.active_drag_id, None
        return lead_id

    def pointer_down(self, lead_id: str, x: float, y: float) -> None:
        self.drag.press(lead_id, x, y)

    def pointer_move(self, x: float, y: float) -> None:
        if self.drag.move(x, y) and self.drag.session is not None:
            self.begin_drag(self.drag.session.lead_id)

    def pointer_up(self, over_status: str | None = None) -> Lead | None:
        """Finish a gesture.

        A click (no drag) returns the lead to open in the detail view.  A
        drop over a column schedules the transition and returns ``None``.
        """
        release = self.drag.release(over_status)
        if release is None:
            return None
        if release.kind == "select":
            return self.store.get(release.lead_id)
        self.end_drag()
        if release.kind == "drop" and release.target_status is not None:
            self.schedule_transition(release.lead_id, release.target_status)
        return None

    # Optimistic status transition

    async def transition(self, lead_id: str, target_status: str) -> TransitionOutcome:
        if target_status not in LEAD_STATUSES:
            logger.warning("Ignoring move of lead %s to unknown status %r", lead_id, target_status)
            return TransitionOutcome.IGNORED
        lead = self.store.get(lead_id)
        if lead is None:
            return TransitionOutcome.IGNORED
        if lead.status == target_status:
            return TransitionOutcome.NOOP

        previous_status = lead.status
        self.store.replace(lead_id, {"status": target_status})

        try:
            await self._client.update_lead(lead_id, {"status": target_status})
        except Exception as exc:
            if self.closed:
                return TransitionOutcome.IGNORED
            logger.warning(
                "Move of lead %s to %s failed (%s); restoring %s",
                lead_id,
                target_status,
                exc,
                previous_status,
                exc_info=not isinstance(exc, CrmClientError),
            )
            self.store.replace(lead_id, {"status": previous_status})
            return TransitionOutcome.ROLLED_BACK

        if self.closed:
            return TransitionOutcome.IGNORED
        return TransitionOutcome.CONFIRMED

    def schedule_transition(
        self, lead_id: str, target_status: str
    ) -> asyncio.Task[TransitionOutcome]:
        """Fire-and-forget transition; the confirm is never cancelled."""
        task = asyncio.ensure_future(self.transition(lead_id, target_status))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def wait_for_transitions(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight))

    def apply_lead_update(self, lead: Lead) -> None:
        """Replace a lead with a server representation (last write wins)."""
        if self.closed:
            return
        self.store.put(lead)

    def close(self) -> None:
        """Tear down: cancel the debounce timer; in-flight confirms keep running
        but their results are ignored."""
        self.closed = True
        self._debouncer.cancel()
        self.drag.session = None
        self.active_drag_id = None
