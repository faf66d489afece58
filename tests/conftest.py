"""Shared test fixtures — in-memory CRM fake, board injection, cache clearing."""

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from lead_pipeline.clients.crm import SHARED_DIRECTORY_CACHE, CrmClientError
from lead_pipeline.config import PipelineSettings
from lead_pipeline.normalization import format_timestamp
from lead_pipeline.pipeline.board import BoardController
from lead_pipeline.server import set_board_override

NOW = datetime(2025, 11, 5, 12, 0, tzinfo=timezone.utc)

TEAM = [
    {"id": "u-ana", "name": "Ana Ruiz"},
    {"id": "u-ben", "name": "Ben Ortiz"},
]

# Current user for the "me" assignee filter.
ME = "u-ana"


def fixed_clock(now: datetime = NOW):
    return lambda: now


def make_lead_payload(
    lead_id: str,
    name: str,
    status: str = "NEW",
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": lead_id,
        "name": name,
        "email": f"{lead_id}@example.com",
        "phone": None,
        "message": f"Hi, I am interested ({lead_id})",
        "status": status,
        "source": "WEBSITE",
        "createdAt": format_timestamp(NOW - timedelta(hours=3)),
        "isDuplicate": False,
        "assignedTo": None,
        "vehicle": None,
    }
    payload.update(extra)
    return payload


DEMO_LEADS = [
    make_lead_payload(
        "L1",
        "Carla Díaz",
        vehicle={
            "id": "V1",
            "title": "Toyota Corolla 2022",
            "brand": {"name": "Toyota"},
            "model": {"name": "Corolla"},
        },
    ),
    make_lead_payload("L2", "Diego Soto", "CONTACTED", assignedTo=TEAM[0], estimatedValue=12000000),
    make_lead_payload("L3", "Elena Vidal", "QUALIFIED", assignedTo=TEAM[1], isDuplicate=True),
    make_lead_payload("L4", "Felipe Rojas", "LOST", message="Looking for a pickup"),
]


class FakeCrmClient:
    """In-memory stand-in for ``CrmClient``.

    Mirrors the API side effects the engine relies on: status and assignment
    PATCHes append activities, and WON/LOST opportunities move the lead.
    Set ``fail[method_name]`` to make a method raise.
    """

    def __init__(self, leads: list[dict[str, Any]] | None = None) -> None:
        self.base_url = "https://crm.test/api"
        self.leads: dict[str, dict[str, Any]] = {
            p["id"]: copy.deepcopy(p) for p in (leads if leads is not None else DEMO_LEADS)
        }
        self.activities: dict[str, list[dict[str, Any]]] = {}
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.opportunities: dict[str, list[dict[str, Any]]] = {}
        self.members = copy.deepcopy(TEAM)
        self.calls: list[tuple[Any, ...]] = []
        self.fail: dict[str, CrmClientError] = {}
        self.now = NOW
        self._ids = itertools.count(1)
        self.closed = False

    def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _member(self, member_id: str | None) -> dict[str, Any] | None:
        return next((dict(m) for m in self.members if m["id"] == member_id), None)

    def _log(self, lead_id: str, activity_type: str, content: str | None = None, **metadata: Any) -> dict[str, Any]:
        activity = {
            "id": self._next_id("A"),
            "leadId": lead_id,
            "type": activity_type,
            "content": content,
            "metadata": metadata or None,
            "createdAt": format_timestamp(self.now),
            "user": dict(TEAM[0]),
        }
        self.activities.setdefault(lead_id, []).append(activity)
        return activity

    def _lead(self, lead_id: str) -> dict[str, Any]:
        lead = self.leads.get(lead_id)
        if lead is None:
            raise CrmClientError("Lead not found", code="CRM_HTTP_ERROR", status=404)
        return lead

    async def close(self) -> None:
        self.closed = True

    # Leads

    async def list_leads(self, *, assigned_to: str = "all", search: str = "") -> list[dict[str, Any]]:
        self._enter("list_leads", assigned_to, search)
        leads = list(self.leads.values())
        if assigned_to == "unassigned":
            leads = [p for p in leads if not p.get("assignedTo")]
        elif assigned_to == "me":
            leads = [p for p in leads if (p.get("assignedTo") or {}).get("id") == ME]
        elif assigned_to and assigned_to != "all":
            leads = [p for p in leads if (p.get("assignedTo") or {}).get("id") == assigned_to]
        needle = search.strip().lower()
        if needle:
            leads = [
                p for p in leads
                if needle in p["name"].lower() or needle in p["email"].lower()
            ]
        return copy.deepcopy(leads)

    async def get_lead(self, lead_id: str) -> dict[str, Any]:
        self._enter("get_lead", lead_id)
        return copy.deepcopy(self._lead(lead_id))

    async def update_lead(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("update_lead", lead_id, dict(fields))
        lead = self._lead(lead_id)
        if "status" in fields and fields["status"] != lead["status"]:
            self._log(lead_id, "STATUS_CHANGE", oldStatus=lead["status"], newStatus=fields["status"])
            lead["status"] = fields["status"]
        if "assignedToId" in fields:
            old = (lead.get("assignedTo") or {}).get("id")
            member = self._member(fields["assignedToId"])
            lead["assignedTo"] = member
            self._log(
                lead_id,
                "ASSIGNMENT",
                oldAssigneeId=old,
                newAssigneeId=fields["assignedToId"],
                assignedToName=member["name"] if member else None,
            )
        if "notes" in fields:
            lead["notes"] = fields["notes"]
        if "estimatedValue" in fields:
            lead["estimatedValue"] = fields["estimatedValue"]
        return copy.deepcopy(lead)

    # Activities

    async def list_activities(self, lead_id: str) -> list[dict[str, Any]]:
        self._enter("list_activities", lead_id)
        # The API returns newest first.
        return copy.deepcopy(list(reversed(self.activities.get(lead_id, []))))

    async def create_activity(self, lead_id: str, activity_type: str, content: str) -> dict[str, Any]:
        self._enter("create_activity", lead_id, activity_type, content)
        return copy.deepcopy(self._log(lead_id, activity_type, content))

    # Tasks

    async def list_tasks(self, lead_id: str) -> list[dict[str, Any]]:
        self._enter("list_tasks", lead_id)
        return copy.deepcopy(self.tasks.get(lead_id, []))

    async def create_task(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("create_task", lead_id, dict(fields))
        task = {
            "id": self._next_id("T"),
            "leadId": lead_id,
            "title": fields["title"],
            "description": fields.get("description"),
            "dueAt": fields["dueAt"],
            "priority": fields.get("priority"),
            "completedAt": None,
            "assignedTo": self._member(fields.get("assignedToId")),
        }
        self.tasks.setdefault(lead_id, []).append(task)
        return copy.deepcopy(task)

    async def update_task(self, lead_id: str, task_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("update_task", lead_id, task_id, dict(fields))
        for task in self.tasks.get(lead_id, []):
            if task["id"] == task_id:
                task.update(fields)
                return copy.deepcopy(task)
        raise CrmClientError("Task not found", code="CRM_HTTP_ERROR", status=404)

    async def delete_task(self, lead_id: str, task_id: str) -> None:
        self._enter("delete_task", lead_id, task_id)
        self.tasks[lead_id] = [t for t in self.tasks.get(lead_id, []) if t["id"] != task_id]

    # Opportunities

    async def list_opportunities(self, lead_id: str) -> list[dict[str, Any]]:
        self._enter("list_opportunities", lead_id)
        return copy.deepcopy(self.opportunities.get(lead_id, []))

    async def create_opportunity(self, lead_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("create_opportunity", lead_id, dict(fields))
        opportunity = {
            "id": self._next_id("O"),
            "leadId": lead_id,
            "status": "OPEN",
            **fields,
        }
        self.opportunities.setdefault(lead_id, []).append(opportunity)
        return copy.deepcopy(opportunity)

    async def update_opportunity(
        self, lead_id: str, opportunity_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        self._enter("update_opportunity", lead_id, opportunity_id, dict(fields))
        for opportunity in self.opportunities.get(lead_id, []):
            if opportunity["id"] == opportunity_id:
                opportunity.update(fields)
                if fields.get("status") == "WON":
                    self._lead(lead_id)["status"] = "CONVERTED"
                elif fields.get("status") == "LOST":
                    self._lead(lead_id)["status"] = "LOST"
                return copy.deepcopy(opportunity)
        raise CrmClientError("Opportunity not found", code="CRM_HTTP_ERROR", status=404)

    async def delete_opportunity(self, lead_id: str, opportunity_id: str) -> None:
        self._enter("delete_opportunity", lead_id, opportunity_id)
        self.opportunities[lead_id] = [
            o for o in self.opportunities.get(lead_id, []) if o["id"] != opportunity_id
        ]

    async def list_dealer_opportunities(self, *, status: str = "all") -> list[dict[str, Any]]:
        self._enter("list_dealer_opportunities", status)
        items = []
        for lead_id, opportunities in self.opportunities.items():
            lead = self.leads.get(lead_id, {})
            for opportunity in opportunities:
                if status != "all" and opportunity["status"] != status:
                    continue
                items.append({**opportunity, "lead": {"id": lead_id, "name": lead.get("name")}})
        # The API returns newest first; ids are issued in creation order.
        items.sort(key=lambda o: int(o["id"][1:]), reverse=True)
        return copy.deepcopy(items)

    # Team directory

    async def list_team_members(self) -> list[dict[str, Any]]:
        self._enter("list_team_members")
        return copy.deepcopy(self.members)


def http_error(status: int = 500, message: str = "Internal error") -> CrmClientError:
    return CrmClientError(message, code="CRM_HTTP_ERROR", status=status)


@pytest.fixture()
def fake_crm() -> FakeCrmClient:
    """A fresh in-memory CRM seeded with the demo leads."""
    return FakeCrmClient()


@pytest.fixture()
def settings() -> PipelineSettings:
    """Short debounce so timer tests stay fast."""
    return PipelineSettings(api_url="https://crm.test/api", search_debounce_ms=20)


@pytest.fixture()
def board(fake_crm: FakeCrmClient, settings: PipelineSettings) -> BoardController:
    return BoardController(fake_crm, settings=settings, clock=fixed_clock())


@pytest.fixture(autouse=True)
def _inject_test_board(fake_crm: FakeCrmClient, settings: PipelineSettings):
    """Wire the server singleton to the fake CRM for every test."""
    set_board_override(BoardController(fake_crm, settings=settings, clock=fixed_clock()))
    yield
    set_board_override(None)


@pytest.fixture(autouse=True)
def _clear_directory_cache():
    """Clear the team-directory cache before and after each test."""
    SHARED_DIRECTORY_CACHE.clear()
    yield
    SHARED_DIRECTORY_CACHE.clear()
