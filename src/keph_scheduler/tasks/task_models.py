# src/keph_scheduler/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class InvalidRecurrenceError(ValueError):
    """Raised when a recurrence configuration is built from invalid values."""


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "pending" is where overdue tasks are parked by the user ("keep in pending").
    - Only "completed" tasks can spawn the next instance of a recurring series.
    """

    CURRENT = "current"
    COMPLETED = "completed"
    PENDING = "pending"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.CURRENT
        try:
            return cls(raw)
        except ValueError:
            return cls.CURRENT


class RecurrenceType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, raw: str | RecurrenceType | None) -> RecurrenceType:
        if raw is None:
            return cls.NONE
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise InvalidRecurrenceError(f"unknown recurrence type: {raw!r}") from None


@dataclass(slots=True, frozen=True)
class RecurrenceConfig:
    """
    How a task repeats.

    Validation happens here, at construction time, so the date arithmetic
    downstream never has to deal with a zero/negative interval.
    """

    type: RecurrenceType
    interval: int = 1
    end_date: datetime | None = None
    max_occurrences: int | None = None

    def __post_init__(self) -> None:
        # Accept raw strings from storage/host code; normalize to the enum.
        object.__setattr__(self, "type", RecurrenceType.parse(self.type))

        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise InvalidRecurrenceError(f"interval must be an integer, got {self.interval!r}")
        if self.interval < 1:
            raise InvalidRecurrenceError(f"interval must be positive, got {self.interval}")

        if self.max_occurrences is not None:
            if isinstance(self.max_occurrences, bool) or not isinstance(self.max_occurrences, int):
                raise InvalidRecurrenceError(
                    f"max_occurrences must be an integer, got {self.max_occurrences!r}"
                )
            if self.max_occurrences < 1:
                raise InvalidRecurrenceError(
                    f"max_occurrences must be positive, got {self.max_occurrences}"
                )

    @property
    def repeats(self) -> bool:
        return self.type != RecurrenceType.NONE


@dataclass(slots=True)
class Subtask:
    id: str
    title: str
    completed: bool = False


@dataclass(slots=True)
class TaskUrl:
    id: str
    value: str


@dataclass(slots=True)
class Task:
    id: str
    title: str
    status: TaskStatus

    created_at: datetime | None = None
    notes: str | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    category: str | None = None

    recurrence: RecurrenceConfig | None = None
    # Lookup key of the series root; never an ownership edge.
    parent_recurring_task_id: str | None = None
    is_recurring_instance: bool = False

    subtasks: list[Subtask] = field(default_factory=list)
    urls: list[TaskUrl] = field(default_factory=list)

    @property
    def series_id(self) -> str:
        """Id of the task that first defined the recurrence."""
        return self.parent_recurring_task_id or self.id


@dataclass(slots=True)
class TaskInstanceSpec:
    """
    A new task proposed by the planner.

    Same shape as Task minus the fields the host assigns on insert
    (id, created_at) and completed_at, which a fresh instance never has.
    """

    title: str
    status: TaskStatus
    due_date: datetime
    recurrence: RecurrenceConfig
    parent_recurring_task_id: str
    is_recurring_instance: bool = True

    notes: str | None = None
    category: str | None = None
    subtasks: list[Subtask] = field(default_factory=list)
    urls: list[TaskUrl] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class TaskUpdate:
    """
    A single-task mutation request handed to the host.

    clear_due_date wins over due_date when both are set.
    """

    task_id: str
    status: TaskStatus | None = None
    due_date: datetime | None = None
    clear_due_date: bool = False
