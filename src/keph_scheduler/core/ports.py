# src/keph_scheduler/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) between the scheduling core and its host.

The core computes values; the host owns storage. Services depend on these
Protocols instead of concrete stores, which keeps the SQLite reference store
swappable and makes in-memory fakes trivial in tests.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from ..tasks.task_models import Task, TaskInstanceSpec, TaskStatus, TaskUpdate


class TaskRepo(Protocol):
    def list_tasks(self, account_id: str) -> list[Task]: ...

    # Must persist all specs or none of them.
    def add_instances(
            self,
            account_id: str,
            instances: list[TaskInstanceSpec],
            *,
            created_at: datetime | None = None,
    ) -> list[str]: ...

    # Must apply all updates or none of them.
    def apply_updates(self, account_id: str, updates: list[TaskUpdate]) -> None: ...

    # Scoped to the account: a task id from another account is a miss (KeyError).
    def update_task_status(
            self,
            account_id: str,
            task_id: str,
            new_status: TaskStatus,
            *,
            completed_at: datetime | None = None,
    ) -> None: ...


class DismissalRepo(Protocol):
    """Durable record of dismissed notifications, keyed by notification content."""

    def list_dismissals(self, account_id: str) -> set[str]: ...
    def add_dismissal(self, account_id: str, key: str) -> None: ...
    def remove_dismissals(self, account_id: str, keys: Iterable[str]) -> None: ...
