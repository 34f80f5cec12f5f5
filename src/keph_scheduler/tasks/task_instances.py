# src/keph_scheduler/tasks/task_instances.py

from __future__ import annotations

"""
Recurring instance generation.

Two layers:
- create_instance(): build the next occurrence of one finished recurring task
- plan_instances(): scan a whole task set and propose the instances the host should insert

Nothing here touches storage. Idempotence comes from scanning the task set for an
existing member of the same series with the same due date, so the host must
serialize "read -> plan -> persist" per account (see task_api.AccountLocks).
"""

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from .recurrence import next_due_date, should_generate_next
from .task_models import Subtask, Task, TaskInstanceSpec, TaskStatus, TaskUrl

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]


class InstanceGenerationError(RuntimeError):
    """A task lacks what is needed to produce its next instance."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"task {task_id}: {reason}")
        self.task_id = task_id
        self.reason = reason


def new_child_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True, frozen=True)
class PlanFailure:
    task_id: str
    error: str


@dataclass(slots=True)
class InstancePlan:
    instances: list[TaskInstanceSpec] = field(default_factory=list)
    failures: list[PlanFailure] = field(default_factory=list)
    skipped_duplicates: int = 0
    skipped_exhausted: int = 0


def create_instance(original: Task, *, new_id: IdFactory = new_child_id) -> TaskInstanceSpec:
    """
    Build the next occurrence of `original`.

    - subtasks/urls are copied with fresh ids; subtask progress is reset
    - parent_recurring_task_id always points at the series root
    - id / created_at / completed_at are left for the host
    """
    if original.recurrence is None:
        raise InstanceGenerationError(original.id, "task has no recurrence configuration")
    if original.due_date is None:
        raise InstanceGenerationError(original.id, "task has no due date")

    return TaskInstanceSpec(
        title=original.title,
        notes=original.notes,
        category=original.category,
        status=TaskStatus.CURRENT,
        due_date=next_due_date(original.due_date, original.recurrence),
        recurrence=original.recurrence,
        parent_recurring_task_id=original.series_id,
        is_recurring_instance=True,
        subtasks=[Subtask(id=new_id(), title=st.title, completed=False) for st in original.subtasks],
        urls=[TaskUrl(id=new_id(), value=u.value) for u in original.urls],
    )


def count_series_occurrences(tasks: Iterable[Task], series_id: str) -> int:
    """Root task + every instance pointing at it."""
    return sum(1 for t in tasks if t.id == series_id or t.parent_recurring_task_id == series_id)


def _is_candidate(task: Task, now: datetime) -> bool:
    rec = task.recurrence
    return (
        rec is not None
        and rec.repeats
        and task.status == TaskStatus.COMPLETED
        and should_generate_next(task, now)
    )


def plan_instances(
    tasks: list[Task],
    now: datetime,
    *,
    enforce_max_occurrences: bool = False,
    new_id: IdFactory = new_child_id,
) -> InstancePlan:
    """
    Propose the recurring instances that should exist but don't yet.

    A candidate is dropped when the task set already holds a task of the same
    series with the same due date (or an earlier candidate of this batch does).
    A task whose instance cannot be built is logged and reported in
    plan.failures; the rest of the batch still goes through.

    Output order follows input order.
    """
    plan = InstancePlan()

    existing: set[tuple[str, datetime]] = {
        (t.parent_recurring_task_id, t.due_date)
        for t in tasks
        if t.parent_recurring_task_id and t.due_date is not None
    }

    for task in tasks:
        try:
            if not _is_candidate(task, now):
                continue

            candidate = create_instance(task, new_id=new_id)
            key = (candidate.parent_recurring_task_id, candidate.due_date)
            if key in existing:
                plan.skipped_duplicates += 1
                logger.debug(
                    "Instance already exists series=%s due=%s",
                    candidate.parent_recurring_task_id,
                    candidate.due_date,
                )
                continue

            max_occ = candidate.recurrence.max_occurrences
            if enforce_max_occurrences and max_occ is not None:
                have = count_series_occurrences(tasks, candidate.parent_recurring_task_id)
                have += sum(
                    1
                    for p in plan.instances
                    if p.parent_recurring_task_id == candidate.parent_recurring_task_id
                )
                if have >= max_occ:
                    plan.skipped_exhausted += 1
                    logger.debug(
                        "Series %s reached max_occurrences=%s", candidate.parent_recurring_task_id, max_occ
                    )
                    continue

            existing.add(key)
            plan.instances.append(candidate)

        except Exception as e:
            logger.exception("Failed to create recurring instance task_id=%s", task.id)
            plan.failures.append(PlanFailure(task_id=task.id, error=str(e)))

    if plan.instances or plan.failures:
        logger.info(
            "Recurring plan: new=%d duplicates=%d exhausted=%d failed=%d",
            len(plan.instances),
            plan.skipped_duplicates,
            plan.skipped_exhausted,
            len(plan.failures),
        )
    return plan


def plan_pending_instances(tasks: list[Task], now: datetime) -> list[TaskInstanceSpec]:
    """Instances to create for `tasks` at `now` (failures are logged and skipped)."""
    return plan_instances(tasks, now).instances
