# src/keph_scheduler/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..notifications.overdue import NotificationCenter
from .ports import DismissalRepo, TaskRepo


class AccountLocks:
    """
    One lock per account.

    Planning is only idempotent if "read tasks -> plan -> persist" never
    interleaves for the same account; different accounts proceed in parallel.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_account(self, account_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock


@dataclass
class SchedulerState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    task_store: TaskRepo
    dismissals: DismissalRepo

    locks: AccountLocks = field(default_factory=AccountLocks)
    notification_centers: dict[str, NotificationCenter] = field(default_factory=dict)
    _centers_guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def default_account_id(self) -> str:
        return str(getattr(self.settings, "default_account_id", "default") or "default")

    @property
    def enforce_max_occurrences(self) -> bool:
        return bool(getattr(self.settings, "enforce_max_occurrences", False))

    def notifications_for(self, account_id: str) -> NotificationCenter:
        # One center per account, even when several threads ask at once.
        with self._centers_guard:
            center = self.notification_centers.get(account_id)
            if center is None:
                center = NotificationCenter(self.dismissals, account_id=account_id)
                self.notification_centers[account_id] = center
            return center
