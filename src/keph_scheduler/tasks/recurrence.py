# src/keph_scheduler/tasks/recurrence.py

"""
Recurrence date arithmetic and the "should this series continue?" policy.

Month and year steps go through dateutil's relativedelta, which clamps the
day-of-month at the end of shorter months (Jan 31 + 1 month = Feb 28/29,
Feb 29 + 1 year = Feb 28).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from .task_models import RecurrenceConfig, RecurrenceType, Task, TaskStatus

_UNIT_NAMES: dict[RecurrenceType, tuple[str, str]] = {
    RecurrenceType.DAILY: ("Daily", "days"),
    RecurrenceType.WEEKLY: ("Weekly", "weeks"),
    RecurrenceType.MONTHLY: ("Monthly", "months"),
    RecurrenceType.YEARLY: ("Yearly", "years"),
}


def next_due_date(current: datetime, recurrence: RecurrenceConfig) -> datetime:
    """
    Advance `current` by one step of the recurrence.

    RecurrenceType.NONE returns `current` unchanged; callers must treat that as
    "no recurrence" and never schedule from it.
    """
    n = recurrence.interval
    kind = recurrence.type

    if kind == RecurrenceType.DAILY:
        return current + timedelta(days=n)
    if kind == RecurrenceType.WEEKLY:
        return current + timedelta(weeks=n)
    if kind == RecurrenceType.MONTHLY:
        return current + relativedelta(months=n)
    if kind == RecurrenceType.YEARLY:
        return current + relativedelta(years=n)
    return current


def should_generate_next(task: Task, now: datetime | None = None) -> bool:
    """
    Decide whether a finished task must spawn the next instance of its series.

    Generation is driven by completion + the task's own due date; `now` is part of
    the signature so every public operation takes the evaluation time explicitly,
    but it does not gate the decision.

    max_occurrences is not checked here (see task_instances.plan_instances).
    """
    rec = task.recurrence
    if rec is None or not rec.repeats:
        return False

    if task.status != TaskStatus.COMPLETED:
        return False

    if task.due_date is None:
        return False

    upcoming = next_due_date(task.due_date, rec)
    if rec.end_date is not None and upcoming > rec.end_date:
        return False

    return True


def format_recurrence_display(recurrence: RecurrenceConfig | None) -> str:
    """Short human label, e.g. "Every 2 weeks (until 2024-03-01, for 5 times)"."""
    if recurrence is None or not recurrence.repeats:
        return "No repeat"

    single, plural = _UNIT_NAMES[recurrence.type]
    text = single if recurrence.interval == 1 else f"Every {recurrence.interval} {plural}"

    conditions: list[str] = []
    if recurrence.end_date is not None:
        conditions.append(f"until {recurrence.end_date.date().isoformat()}")
    if recurrence.max_occurrences is not None:
        conditions.append(f"for {recurrence.max_occurrences} times")

    if conditions:
        text += f" ({', '.join(conditions)})"
    return text
