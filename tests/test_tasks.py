"""Tests for task scheduling: due labels, overdue state, and task lifecycle."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from lead_pipeline.models import FieldValidationError, Task, TeamMember
from lead_pipeline.pipeline.tasks import (
    TaskScheduler,
    due_label,
    is_overdue,
    partition_tasks,
    validate_new_task,
)

from conftest import NOW, FakeCrmClient, http_error


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _task(task_id: str, due_in: timedelta | None, *, completed: bool = False) -> Task:
    return Task(
        id=task_id,
        lead_id="L1",
        title=f"Task {task_id}",
        due_at=NOW + due_in if due_in is not None else None,
        assigned_to=TeamMember(id="u-ana", name="Ana Ruiz"),
        completed_at=NOW if completed else None,
    )


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(NOW)


@pytest.fixture()
def scheduler(fake_crm: FakeCrmClient, clock: MutableClock) -> TaskScheduler:
    return TaskScheduler(fake_crm, "L1", clock=clock)


# ── Pure helpers ───────────────────────────────────────────────


class TestOverdue:
    def test_past_due_pending_is_overdue(self):
        assert is_overdue(_task("t", timedelta(minutes=-1)), NOW)

    def test_future_is_not_overdue(self):
        assert not is_overdue(_task("t", timedelta(minutes=1)), NOW)

    def test_completed_is_never_overdue(self):
        assert not is_overdue(_task("t", timedelta(days=-3), completed=True), NOW)

    def test_missing_due_date(self):
        assert not is_overdue(_task("t", None), NOW)


class TestDueLabel:
    def test_within_a_day_shows_time(self):
        assert due_label(NOW + timedelta(hours=5, minutes=30), NOW) == "17:30"
        assert due_label(NOW - timedelta(hours=2), NOW) == "10:00"

    def test_within_a_week_shows_days(self):
        assert due_label(NOW + timedelta(days=3, hours=2), NOW) == "3d"
        assert due_label(NOW - timedelta(days=2), NOW) == "2d"

    def test_further_out_shows_date(self):
        assert due_label(NOW + timedelta(days=10), NOW) == "15 Nov"

    def test_none(self):
        assert due_label(None, NOW) == ""


class TestPartition:
    def test_pending_sorted_by_due_then_completed(self):
        tasks = [
            _task("late", timedelta(days=2)),
            _task("done", timedelta(days=-1), completed=True),
            _task("undated", None),
            _task("soon", timedelta(hours=1)),
        ]
        pending, completed = partition_tasks(tasks)
        assert [t.id for t in pending] == ["soon", "late", "undated"]
        assert [t.id for t in completed] == ["done"]


class TestValidateNewTask:
    def test_valid(self):
        validate_new_task(
            title="Call back",
            assigned_to_id="u-ana",
            due_at=NOW + timedelta(hours=1),
            priority="HIGH",
            now=NOW,
        )

    def test_collects_every_field_error(self):
        with pytest.raises(FieldValidationError) as excinfo:
            validate_new_task(title=" ", assigned_to_id="", due_at=None, priority="URGENT", now=NOW)
        assert set(excinfo.value.errors) == {"title", "assigned_to", "due_at", "priority"}

    def test_past_due_date_rejected(self):
        with pytest.raises(FieldValidationError) as excinfo:
            validate_new_task(
                title="Call back",
                assigned_to_id="u-ana",
                due_at=NOW - timedelta(minutes=5),
                priority="LOW",
                now=NOW,
            )
        assert "past" in excinfo.value.errors["due_at"]


# ── Scheduler ──────────────────────────────────────────────────


class TestTaskScheduler:
    async def test_due_soon_then_overdue_then_completed(
        self, scheduler: TaskScheduler, clock: MutableClock
    ):
        created = await scheduler.create(
            title="Send financing quote",
            assigned_to_id="u-ana",
            due_at=NOW + timedelta(minutes=20),
        )
        assert created.priority == "MEDIUM"

        (view,), _ = scheduler.views()
        assert view.due_label == "12:20"
        assert not view.overdue
        before = scheduler.get(created.id)

        clock.advance(minutes=21)
        (view,), _ = scheduler.views()
        assert view.overdue
        assert scheduler.get(created.id) == before
        assert scheduler.overdue() == [before]

        completed = await scheduler.complete(created.id)
        assert completed.is_completed
        assert scheduler.overdue() == []
        pending, done = scheduler.views()
        assert pending == []
        assert done[0].completed_label == "5 Nov 2025"

    async def test_create_sends_normalized_payload(
        self, scheduler: TaskScheduler, fake_crm: FakeCrmClient
    ):
        await scheduler.create(
            title="  Test drive follow-up ",
            assigned_to_id="u-ben",
            due_at=NOW + timedelta(days=1),
            description="",
            priority="high",
        )
        (_, lead_id, body), = fake_crm.calls_to("create_task")
        assert lead_id == "L1"
        assert body == {
            "title": "Test drive follow-up",
            "description": None,
            "assignedToId": "u-ben",
            "dueAt": "2025-11-06T12:00:00Z",
            "priority": "HIGH",
        }
        assert scheduler.tasks[0].assigned_to.name == "Ben Ortiz"

    async def test_invalid_task_sends_nothing(
        self, scheduler: TaskScheduler, fake_crm: FakeCrmClient
    ):
        with pytest.raises(FieldValidationError):
            await scheduler.create(title="", assigned_to_id="u-ana", due_at=NOW)
        assert fake_crm.calls_to("create_task") == []

    async def test_complete_twice_is_a_noop(
        self, scheduler: TaskScheduler, fake_crm: FakeCrmClient
    ):
        task = await scheduler.create(
            title="Call", assigned_to_id="u-ana", due_at=NOW + timedelta(hours=1)
        )
        await scheduler.complete(task.id)
        await scheduler.complete(task.id)
        assert len(fake_crm.calls_to("update_task")) == 1

    async def test_delete_requires_confirmation(
        self, scheduler: TaskScheduler, fake_crm: FakeCrmClient
    ):
        task = await scheduler.create(
            title="Call back", assigned_to_id="u-ana", due_at=NOW + timedelta(hours=1)
        )
        prompts: list[str] = []

        def _decline(prompt: str) -> bool:
            prompts.append(prompt)
            return False

        assert not await scheduler.delete(task.id, confirm=_decline)
        assert prompts == ["Delete task 'Call back'?"]
        assert fake_crm.calls_to("delete_task") == []

        assert await scheduler.delete(task.id, confirm=lambda _prompt: True)
        assert scheduler.tasks == []

    async def test_next_follow_up_is_earliest_pending(self, scheduler: TaskScheduler):
        for hours in (5, 2, 9):
            await scheduler.create(
                title=f"In {hours}h", assigned_to_id="u-ana", due_at=NOW + timedelta(hours=hours)
            )
        assert scheduler.next_follow_up() == NOW + timedelta(hours=2)

    async def test_failed_load_keeps_tasks(
        self, scheduler: TaskScheduler, fake_crm: FakeCrmClient
    ):
        await scheduler.create(title="Call", assigned_to_id="u-ana", due_at=NOW + timedelta(hours=1))
        fake_crm.fail["list_tasks"] = http_error(500)
        assert not await scheduler.load()
        assert len(scheduler.tasks) == 1
        assert scheduler.last_error
