"""Task Scheduler — pending/completed partitioning and due/overdue labels."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from lead_pipeline.clients.crm import CrmClient, CrmClientError
from lead_pipeline.constants import (
    DEFAULT_TASK_PRIORITY,
    TASK_PRIORITIES,
    TASK_PRIORITY_LABELS,
    UNKNOWN_USER_LABEL,
)
from lead_pipeline.formatting import full_date, short_date, time_of_day
from lead_pipeline.models import FieldValidationError, Task
from lead_pipeline.normalization import format_timestamp

logger = logging.getLogger(__name__)

_HOUR_SECONDS = 3600

Confirm = Callable[[str], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_overdue(task: Task, now: datetime) -> bool:
    """Overdue means past due and not completed."""
    if task.completed_at is not None or task.due_at is None:
        return False
    return task.due_at < now


def due_label(due_at: datetime | None, now: datetime) -> str:
    """Label a due date relative to ``now`` (past or future alike).

    Under 24 hours away shows the time of day, under 7 days the whole-day
    count, anything further the calendar date.
    """
    if due_at is None:
        return ""
    diff_hours = int(abs((due_at - now).total_seconds()) // _HOUR_SECONDS)
    diff_days = diff_hours // 24
    if diff_hours < 24:
        return time_of_day(due_at, now)
    if diff_days < 7:
        return f"{diff_days}d"
    return short_date(due_at, now)


def _due_sort_key(task: Task) -> tuple[int, float]:
    if task.due_at is None:
        return (1, 0.0)
    return (0, task.due_at.timestamp())


def partition_tasks(tasks: list[Task]) -> tuple[list[Task], list[Task]]:
    """Split into (pending by due date, completed)."""
    pending = sorted((t for t in tasks if t.completed_at is None), key=_due_sort_key)
    completed = [t for t in tasks if t.completed_at is not None]
    return pending, completed


@dataclass(frozen=True)
class TaskView:
    task_id: str
    title: str
    description: str | None
    due_label: str
    overdue: bool
    priority: str
    priority_label: str
    assignee: str
    completed_label: str | None = None


def task_view(task: Task, now: datetime) -> TaskView:
    return TaskView(
        task_id=task.id,
        title=task.title,
        description=task.description,
        due_label=due_label(task.due_at, now),
        overdue=is_overdue(task, now),
        priority=task.priority,
        priority_label=TASK_PRIORITY_LABELS.get(task.priority, task.priority),
        assignee=task.assigned_to.first_name if task.assigned_to else UNKNOWN_USER_LABEL,
        completed_label=full_date(task.completed_at, now) if task.completed_at else None,
    )


def validate_new_task(
    *,
    title: str,
    assigned_to_id: str,
    due_at: datetime | None,
    priority: str,
    now: datetime,
) -> None:
    """Raise ``FieldValidationError`` for any invalid task-form field."""
    errors: dict[str, str] = {}
    if not title.strip():
        errors["title"] = "Title is required."
    if not assigned_to_id.strip():
        errors["assigned_to"] = "The task must be assigned to someone."
    if due_at is None:
        errors["due_at"] = "Due date is required."
    elif due_at < now:
        errors["due_at"] = "Due date cannot be in the past."
    if priority not in TASK_PRIORITIES:
        errors["priority"] = f"Priority must be one of {', '.join(TASK_PRIORITIES)}."
    if errors:
        raise FieldValidationError(errors)


class TaskScheduler:
    """Task list for one lead, refreshed from the API after every write."""

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
        self.tasks: list[Task] = []
        self.loaded = False
        self.last_error: str | None = None

    def get(self, task_id: str) -> Task | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    @property
    def pending(self) -> list[Task]:
        return partition_tasks(self.tasks)[0]

    @property
    def completed(self) -> list[Task]:
        return partition_tasks(self.tasks)[1]

    def views(self) -> tuple[list[TaskView], list[TaskView]]:
        """(pending, completed) views labelled against the current time."""
        now = self._clock()
        pending, completed = partition_tasks(self.tasks)
        return [task_view(t, now) for t in pending], [task_view(t, now) for t in completed]

    def overdue(self) -> list[Task]:
        now = self._clock()
        return [t for t in self.tasks if is_overdue(t, now)]

    def next_follow_up(self) -> datetime | None:
        """Earliest due date among pending tasks."""
        pending = [t for t in self.pending if t.due_at is not None]
        return pending[0].due_at if pending else None

    async def load(self) -> bool:
        """Fetch tasks; on failure keep the last-known-good list."""
        try:
            payloads = await self._client.list_tasks(self.lead_id)
        except CrmClientError as exc:
            logger.error("Failed to load tasks for lead %s: %s", self.lead_id, exc)
            self.last_error = str(exc)
            return False
        self.tasks = [Task.from_payload(p, lead_id=self.lead_id) for p in payloads]
        self.loaded = True
        self.last_error = None
        return True

    async def create(
        self,
        *,
        title: str,
        assigned_to_id: str,
        due_at: datetime | None,
        description: str = "",
        priority: str = DEFAULT_TASK_PRIORITY,
    ) -> Task:
        """Validate, create, and reload.  Validation failures send nothing."""
        normalized_priority = (priority or DEFAULT_TASK_PRIORITY).strip().upper()
        validate_new_task(
            title=title,
            assigned_to_id=assigned_to_id,
            due_at=due_at,
            priority=normalized_priority,
            now=self._clock(),
        )
        payload = await self._client.create_task(
            self.lead_id,
            {
                "title": title.strip(),
                "description": description.strip() or None,
                "assignedToId": assigned_to_id.strip(),
                "dueAt": format_timestamp(due_at),
                "priority": normalized_priority,
            },
        )
        await self.load()
        return Task.from_payload(payload, lead_id=self.lead_id)

    async def complete(self, task_id: str) -> Task | None:
        """Mark a task completed (one-way).  Already-completed tasks are left alone."""
        task = self.get(task_id)
        if task is not None and task.completed_at is not None:
            return task

        payload = await self._client.update_task(
            self.lead_id,
            task_id,
            {"completedAt": format_timestamp(self._clock())},
        )
        updated = Task.from_payload(payload, lead_id=self.lead_id)
        self.tasks = [updated if t.id == task_id else t for t in self.tasks]
        await self.load()
        return updated

    async def delete(self, task_id: str, *, confirm: Confirm) -> bool:
        """Delete after explicit confirmation; returns False if declined."""
        task = self.get(task_id)
        label = task.title if task else task_id
        if not confirm(f"Delete task '{label}'?"):
            return False
        await self._client.delete_task(self.lead_id, task_id)
        await self.load()
        return True
