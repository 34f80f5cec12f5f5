# src/keph_scheduler/notifications/notification_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from ..tasks.task_models import Task


class NotificationType(StrEnum):
    OVERDUE_TASKS = "overdue-tasks"


@dataclass(slots=True)
class Notification:
    id: str
    type: NotificationType
    title: str
    description: str
    created_at: datetime
    read: bool = False
    data: list[Task] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.data]

    def dismissal_key(self) -> str:
        """
        Stable key for the dismissed set: the sorted ids of the tasks it covers.

        Two notifications about the same tasks share a key no matter their order.
        """
        return f"{self.type.value}:" + ",".join(sorted(self.task_ids))
