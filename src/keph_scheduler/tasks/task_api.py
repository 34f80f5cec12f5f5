# src/keph_scheduler/tasks/task_api.py

"""
Host-facing helpers around the scheduling core.

Every helper takes the evaluation time explicitly and runs its
"read -> compute -> persist" sequence under the account's lock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from ..core.state import SchedulerState
from ..notifications.notification_models import Notification
from ..notifications.overdue import move_to_pending, move_to_today
from .task_instances import InstancePlan, plan_instances
from .task_models import TaskStatus

logger = logging.getLogger(__name__)


def _account(state: SchedulerState, account_id: str | None) -> str:
    return account_id or state.default_account_id


def run_recurrence_pass(
    state: SchedulerState,
    *,
    now: datetime,
    account_id: str | None = None,
) -> list[str]:
    """
    Plan and persist the missing recurring instances of one account.

    Returns the ids of the created tasks. Planning failures of single tasks are
    logged by the planner and do not stop the pass; a persistence failure
    propagates (the store has already rolled the batch back).
    """
    acc = _account(state, account_id)
    with state.locks.for_account(acc):
        plan = _plan_locked(state, acc, now)
        if not plan.instances:
            return []
        return state.task_store.add_instances(acc, plan.instances, created_at=now)


def _plan_locked(state: SchedulerState, account_id: str, now: datetime) -> InstancePlan:
    tasks = state.task_store.list_tasks(account_id)
    plan = plan_instances(tasks, now, enforce_max_occurrences=state.enforce_max_occurrences)
    for failure in plan.failures:
        logger.warning(
            "Skipped recurring instance account=%s task_id=%s: %s",
            account_id,
            failure.task_id,
            failure.error,
        )
    return plan


def complete_task(
    state: SchedulerState,
    task_id: str,
    *,
    now: datetime,
    account_id: str | None = None,
) -> list[str]:
    """Mark a task completed and immediately spawn whatever the series now needs."""
    acc = _account(state, account_id)
    with state.locks.for_account(acc):
        state.task_store.update_task_status(acc, task_id, TaskStatus.COMPLETED, completed_at=now)
        logger.info("Task %s -> completed account=%s", task_id, acc)
        plan = _plan_locked(state, acc, now)
        if not plan.instances:
            return []
        return state.task_store.add_instances(acc, plan.instances, created_at=now)


def refresh_notifications(
    state: SchedulerState,
    *,
    now: datetime,
    account_id: str | None = None,
) -> list[Notification]:
    acc = _account(state, account_id)
    center = state.notifications_for(acc)
    with state.locks.for_account(acc):
        center.refresh(state.task_store.list_tasks(acc), now)
        return center.active()


def move_overdue_to_today(
    state: SchedulerState,
    task_ids: Iterable[str],
    *,
    now: datetime,
    account_id: str | None = None,
) -> Notification | None:
    """Reschedule the selected overdue tasks to the end of today; returns what is left of the notification."""
    acc = _account(state, account_id)
    ids = list(task_ids)
    with state.locks.for_account(acc):
        updates = move_to_today(state.task_store.list_tasks(acc), ids, now)
        state.task_store.apply_updates(acc, updates)
        logger.info("Moved %d overdue task(s) to today account=%s", len(updates), acc)
        return state.notifications_for(acc).acknowledge(ids)


def keep_in_pending(
    state: SchedulerState,
    task_ids: Iterable[str],
    *,
    account_id: str | None = None,
) -> Notification | None:
    """Park the selected overdue tasks in pending; returns what is left of the notification."""
    acc = _account(state, account_id)
    ids = list(task_ids)
    with state.locks.for_account(acc):
        updates = move_to_pending(state.task_store.list_tasks(acc), ids)
        state.task_store.apply_updates(acc, updates)
        logger.info("Moved %d overdue task(s) to pending account=%s", len(updates), acc)
        return state.notifications_for(acc).acknowledge(ids)


def dismiss_notification(
    state: SchedulerState,
    notification_id: str,
    *,
    account_id: str | None = None,
) -> bool:
    acc = _account(state, account_id)
    with state.locks.for_account(acc):
        return state.notifications_for(acc).dismiss(notification_id)
