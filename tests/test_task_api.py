# tests/test_task_api.py

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from keph_scheduler.bootstrap import create_initial_state
from keph_scheduler.core.state import AccountLocks
from keph_scheduler.notifications.overdue import UnknownTaskError
from keph_scheduler.tasks.task_api import (
    complete_task,
    dismiss_notification,
    keep_in_pending,
    move_overdue_to_today,
    refresh_notifications,
    run_recurrence_pass,
)
from keph_scheduler.tasks.task_models import RecurrenceConfig, RecurrenceType, Task, TaskStatus

from .fakes import FakeTaskRepo

JAN_1 = datetime(2024, 1, 1)
JAN_8 = datetime(2024, 1, 8)


def _weekly_done(task_id: str = "A") -> Task:
    return Task(
        id=task_id,
        title="Weekly review",
        status=TaskStatus.COMPLETED,
        due_date=JAN_1,
        recurrence=RecurrenceConfig(type=RecurrenceType.WEEKLY),
    )


def test_recurrence_pass_persists_once(state, repo: FakeTaskRepo) -> None:
    repo.tasks["default"]["A"] = _weekly_done()

    created = run_recurrence_pass(state, now=JAN_8)
    assert len(created) == 1
    new = repo.tasks["default"][created[0]]
    assert new.parent_recurring_task_id == "A"
    assert new.due_date == JAN_8
    assert new.created_at == JAN_8

    assert run_recurrence_pass(state, now=JAN_8) == []
    assert repo.add_calls == 1


def test_complete_task_spawns_next_instance(state, repo: FakeTaskRepo) -> None:
    open_task = _weekly_done()
    open_task.status = TaskStatus.CURRENT
    repo.tasks["default"]["A"] = open_task

    created = complete_task(state, "A", now=JAN_8)
    assert len(created) == 1
    assert repo.tasks["default"]["A"].status == TaskStatus.COMPLETED
    assert repo.tasks["default"]["A"].completed_at == JAN_8


def test_complete_task_ignores_other_accounts(state, repo: FakeTaskRepo) -> None:
    open_task = _weekly_done()
    open_task.status = TaskStatus.CURRENT
    repo.tasks["other"] = {"A": open_task}

    with pytest.raises(KeyError):
        complete_task(state, "A", now=JAN_8, account_id="default")

    assert repo.tasks["other"]["A"].status == TaskStatus.CURRENT
    assert repo.tasks["other"]["A"].completed_at is None
    assert repo.add_calls == 0


def test_complete_task_cross_account_with_sqlite(settings) -> None:
    state = create_initial_state(settings=settings)
    tid = state.task_store.add_task("other", title="Gym", due_date=JAN_1)

    with pytest.raises(KeyError):
        complete_task(state, tid, now=JAN_8, account_id="default")

    task = state.task_store.get_task(tid)
    assert task is not None and task.status == TaskStatus.CURRENT


def test_overdue_flow_move_to_today(state, repo: FakeTaskRepo) -> None:
    now = JAN_8
    repo.tasks["default"].update(
        {
            "a": Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=now - timedelta(days=2)),
            "b": Task(id="b", title="b", status=TaskStatus.CURRENT, due_date=now - timedelta(days=1)),
        }
    )

    (n,) = refresh_notifications(state, now=now)
    assert n.title == "You have 2 overdue tasks"

    left = move_overdue_to_today(state, ["a"], now=now)
    assert left is not None and left.task_ids == ["b"]
    assert repo.tasks["default"]["a"].due_date == datetime(2024, 1, 8, 23, 59, 59, 999999)
    assert repo.tasks["default"]["a"].status == TaskStatus.CURRENT

    assert keep_in_pending(state, ["b"]) is None
    assert repo.tasks["default"]["b"].status == TaskStatus.PENDING
    assert repo.tasks["default"]["b"].due_date is None

    # "a" is due at the end of today, "b" has no due date any more.
    assert refresh_notifications(state, now=now + timedelta(minutes=1)) == []
    assert refresh_notifications(state, now=datetime(2024, 1, 8, 23, 59)) == []


def test_moved_task_is_overdue_again_tomorrow(state, repo: FakeTaskRepo) -> None:
    now = datetime(2024, 1, 8, 9, 0)
    repo.tasks["default"]["a"] = Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=JAN_1)
    refresh_notifications(state, now=now)

    assert move_overdue_to_today(state, ["a"], now=now) is None
    assert refresh_notifications(state, now=now + timedelta(minutes=1)) == []

    (n,) = refresh_notifications(state, now=datetime(2024, 1, 9, 0, 0, 1))
    assert n.task_ids == ["a"]


def test_move_with_unknown_id_changes_nothing(state, repo: FakeTaskRepo) -> None:
    due = JAN_1
    repo.tasks["default"]["a"] = Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=due)

    with pytest.raises(UnknownTaskError):
        move_overdue_to_today(state, ["a", "zzz"], now=JAN_8)
    assert repo.tasks["default"]["a"].due_date == due


def test_storage_failure_leaves_notification(state, repo: FakeTaskRepo) -> None:
    repo.tasks["default"]["a"] = Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=JAN_1)
    refresh_notifications(state, now=JAN_8)

    repo.fail_next_apply = True
    with pytest.raises(RuntimeError):
        move_overdue_to_today(state, ["a"], now=JAN_8)

    (n,) = state.notifications_for("default").active()
    assert n.task_ids == ["a"]


def test_dismiss_notification(state, repo: FakeTaskRepo) -> None:
    repo.tasks["default"]["a"] = Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=JAN_1)
    (n,) = refresh_notifications(state, now=JAN_8)

    assert dismiss_notification(state, n.id) is True
    assert refresh_notifications(state, now=JAN_8 + timedelta(minutes=5)) == []
    assert repo.tasks["default"]["a"].due_date == JAN_1


def test_account_locks_are_per_account() -> None:
    locks = AccountLocks()
    assert locks.for_account("a") is locks.for_account("a")
    assert locks.for_account("a") is not locks.for_account("b")


def test_notification_center_is_shared_across_threads(state) -> None:
    barrier = threading.Barrier(8)
    centers = []

    def worker() -> None:
        barrier.wait()
        centers.append(state.notifications_for("shared"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(centers) == 8
    assert all(c is centers[0] for c in centers)
    assert list(state.notification_centers) == ["shared"]


def test_remediation_acknowledges_under_account_lock(state, repo: FakeTaskRepo, monkeypatch) -> None:
    repo.tasks["default"].update(
        {
            "a": Task(id="a", title="a", status=TaskStatus.CURRENT, due_date=JAN_1),
            "b": Task(id="b", title="b", status=TaskStatus.CURRENT, due_date=JAN_1),
        }
    )
    refresh_notifications(state, now=JAN_8)

    center = state.notifications_for("default")
    lock = state.locks.for_account("default")
    held: list[bool] = []
    original = center.acknowledge

    def acknowledge(task_ids):
        held.append(lock.locked())
        return original(task_ids)

    monkeypatch.setattr(center, "acknowledge", acknowledge)

    move_overdue_to_today(state, ["a"], now=JAN_8)
    keep_in_pending(state, ["b"])

    assert held == [True, True]
    assert not lock.locked()
    assert center.active() == []


def test_concurrent_passes_do_not_duplicate(state, repo: FakeTaskRepo) -> None:
    repo.tasks["default"]["A"] = _weekly_done()
    results: list[list[str]] = []

    def worker() -> None:
        results.append(run_recurrence_pass(state, now=JAN_8))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(len(r) for r in results) == 1
    assert len(repo.tasks["default"]) == 2


def test_bootstrap_with_sqlite_end_to_end(settings) -> None:
    state = create_initial_state(settings=settings)
    store = state.task_store

    root = store.add_task(
        "default",
        title="Gym",
        due_date=JAN_1,
        recurrence=RecurrenceConfig(type=RecurrenceType.DAILY, interval=2),
    )
    created = complete_task(state, root, now=JAN_1 + timedelta(hours=20))
    assert len(created) == 1

    # The new instance (due Jan 3) is overdue on Jan 8.
    (n,) = refresh_notifications(state, now=JAN_8)
    assert n.task_ids == created

    assert dismiss_notification(state, n.id) is True
    assert store.list_dismissals("default") == {n.dismissal_key()}

    # A fresh state over the same DB keeps the alert dismissed.
    fresh = create_initial_state(settings=settings)
    assert refresh_notifications(fresh, now=JAN_8) == []
