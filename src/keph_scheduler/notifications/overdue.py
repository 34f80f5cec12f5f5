# src/keph_scheduler/notifications/overdue.py

"""
Overdue detection and the "overdue tasks" notification.

Notifications are a derived view: they are rebuilt from the task set on every
refresh. The only durable state is the dismissed set (DismissalRepo), keyed by
the ids of the tasks a notification covered, so a dismissed alert does not
reappear until the overdue set actually changes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from ..core.ports import DismissalRepo
from ..tasks.task_models import Task, TaskStatus, TaskUpdate
from .notification_models import Notification, NotificationType

logger = logging.getLogger(__name__)

OVERDUE_NOTIFICATION_ID = "overdue-tasks"
OVERDUE_DESCRIPTION = "What would you like to do with them?"


class UnknownTaskError(KeyError):
    """Remediation was requested for task ids that are not in the task set."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"unknown task ids: {', '.join(missing)}")
        self.missing = missing


def is_overdue(task: Task, now: datetime) -> bool:
    # Strictly before: a task due exactly at `now` is not overdue yet.
    return task.status != TaskStatus.COMPLETED and task.due_date is not None and task.due_date < now


def detect_overdue(tasks: Iterable[Task], now: datetime) -> list[Task]:
    return [t for t in tasks if is_overdue(t, now)]


def overdue_title(count: int) -> str:
    return f"You have {count} overdue task{'s' if count != 1 else ''}"


def build_overdue_notification(
    overdue_tasks: list[Task],
    *,
    now: datetime,
    previous: Notification | None = None,
) -> Notification | None:
    """
    Aggregate notification for `overdue_tasks`, or None when there are none.

    With `previous` (the currently shown overdue notification):
    - created_at is kept
    - tasks already shown keep their position, newly overdue ones are appended
    - tasks that are no longer overdue drop out
    - read is kept only if nothing new was added
    """
    if not overdue_tasks:
        return None

    if previous is None:
        return Notification(
            id=OVERDUE_NOTIFICATION_ID,
            type=NotificationType.OVERDUE_TASKS,
            title=overdue_title(len(overdue_tasks)),
            description=OVERDUE_DESCRIPTION,
            created_at=now,
            read=False,
            data=list(overdue_tasks),
        )

    by_id = {t.id: t for t in overdue_tasks}
    shown = [by_id[tid] for tid in previous.task_ids if tid in by_id]
    shown_ids = {t.id for t in shown}
    added = [t for t in overdue_tasks if t.id not in shown_ids]
    data = shown + added

    return Notification(
        id=previous.id,
        type=previous.type,
        title=overdue_title(len(data)),
        description=previous.description,
        created_at=previous.created_at,
        read=previous.read and not added,
        data=data,
    )


def remove_acted_tasks(notification: Notification, task_ids: Iterable[str]) -> Notification | None:
    """Drop tasks the user already acted on; None once nothing is left."""
    acted = set(task_ids)
    remaining = [t for t in notification.data if t.id not in acted]
    if not remaining:
        return None
    return Notification(
        id=notification.id,
        type=notification.type,
        title=overdue_title(len(remaining)),
        description=notification.description,
        created_at=notification.created_at,
        read=notification.read,
        data=remaining,
    )


def _resolve_ids(tasks: Iterable[Task], task_ids: Iterable[str]) -> list[str]:
    known = {t.id for t in tasks}
    ordered = list(dict.fromkeys(task_ids))
    missing = [tid for tid in ordered if tid not in known]
    if missing:
        raise UnknownTaskError(missing)
    return ordered


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def move_to_today(tasks: Iterable[Task], task_ids: Iterable[str], now: datetime) -> list[TaskUpdate]:
    """
    Reschedule the given tasks to the end of `now`'s day. Status is left alone.

    The tasks stay out of the overdue set for the rest of today.

    All-or-nothing: any unknown id fails the whole request before anything is built.
    """
    ids = _resolve_ids(tasks, task_ids)
    due = end_of_day(now)
    return [TaskUpdate(task_id=tid, due_date=due) for tid in ids]


def move_to_pending(tasks: Iterable[Task], task_ids: Iterable[str]) -> list[TaskUpdate]:
    """
    Park the given tasks in "pending" and clear their due dates.

    Clearing the due date is what takes them out of the overdue predicate
    (pending is still "not completed").
    """
    ids = _resolve_ids(tasks, task_ids)
    return [TaskUpdate(task_id=tid, status=TaskStatus.PENDING, clear_due_date=True) for tid in ids]


class InMemoryDismissals:
    """DismissalRepo kept in a dict; enough for a single process or tests."""

    def __init__(self) -> None:
        self._keys: dict[str, set[str]] = {}

    def list_dismissals(self, account_id: str) -> set[str]:
        return set(self._keys.get(account_id, set()))

    def add_dismissal(self, account_id: str, key: str) -> None:
        self._keys.setdefault(account_id, set()).add(key)

    def remove_dismissals(self, account_id: str, keys: Iterable[str]) -> None:
        bucket = self._keys.get(account_id)
        if bucket is not None:
            bucket.difference_update(keys)


class NotificationCenter:
    """
    Active notifications for one account.

    refresh() rebuilds the overdue notification from the task set, honouring the
    dismissed set. Dismissal keys that no longer match the current overdue set are
    forgotten, so the same tasks surface again if they go overdue again later.
    """

    def __init__(self, dismissals: DismissalRepo | None = None, *, account_id: str = "default") -> None:
        self._dismissals: DismissalRepo = dismissals if dismissals is not None else InMemoryDismissals()
        self._account_id = account_id
        self._active: dict[str, Notification] = {}

    @property
    def account_id(self) -> str:
        return self._account_id

    def active(self) -> list[Notification]:
        return list(self._active.values())

    def get(self, notification_id: str) -> Notification | None:
        return self._active.get(notification_id)

    def refresh(self, tasks: list[Task], now: datetime) -> Notification | None:
        overdue = detect_overdue(tasks, now)
        previous = self._active.get(OVERDUE_NOTIFICATION_ID)
        notification = build_overdue_notification(overdue, now=now, previous=previous)

        dismissed = self._dismissals.list_dismissals(self._account_id)
        current_key = notification.dismissal_key() if notification is not None else None

        stale = {k for k in dismissed if k != current_key}
        if stale:
            self._dismissals.remove_dismissals(self._account_id, stale)

        if notification is None or current_key in dismissed:
            self._active.pop(OVERDUE_NOTIFICATION_ID, None)
            return None

        if previous is None:
            logger.info("Overdue notification raised account=%s tasks=%d", self._account_id, len(overdue))
        self._active[notification.id] = notification
        return notification

    def mark_read(self, notification_id: str) -> bool:
        n = self._active.get(notification_id)
        if n is None:
            return False
        n.read = True
        return True

    def dismiss(self, notification_id: str) -> bool:
        """Remove from the active set and remember it. Tasks are not touched."""
        n = self._active.pop(notification_id, None)
        if n is None:
            return False
        self._dismissals.add_dismissal(self._account_id, n.dismissal_key())
        logger.info("Notification dismissed account=%s id=%s", self._account_id, notification_id)
        return True

    def acknowledge(self, task_ids: Iterable[str]) -> Notification | None:
        """Forget tasks the user has just remediated (moved to today / pending)."""
        n = self._active.get(OVERDUE_NOTIFICATION_ID)
        if n is None:
            return None
        updated = remove_acted_tasks(n, task_ids)
        if updated is None:
            del self._active[OVERDUE_NOTIFICATION_ID]
        else:
            self._active[OVERDUE_NOTIFICATION_ID] = updated
        return updated
