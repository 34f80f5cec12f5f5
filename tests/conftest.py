# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from keph_scheduler.core.state import SchedulerState
from keph_scheduler.tasks.task_models import RecurrenceConfig, RecurrenceType, Task, TaskStatus
from keph_scheduler.tasks.task_store import TaskStore

from .fakes import FakeTaskRepo


@pytest.fixture()
def now() -> datetime:
    return datetime(2024, 1, 8, 9, 0, 0)


@pytest.fixture()
def weekly() -> RecurrenceConfig:
    return RecurrenceConfig(type=RecurrenceType.WEEKLY, interval=1)


@pytest.fixture()
def make_task() -> Callable[..., Task]:
    """Task factory with sensible defaults; override any field by keyword."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Task:
        counter["n"] += 1
        fields: dict[str, Any] = {
            "id": f"t{counter['n']}",
            "title": f"Task {counter['n']}",
            "status": TaskStatus.CURRENT,
        }
        fields.update(overrides)
        return Task(**fields)

    return _make


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with SchedulerState and bootstrap.

    We intentionally use a SimpleNamespace rather than reading the environment,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="keph-test",
        log_level="INFO",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        log_dir=tmp_path / "logs",
        default_account_id="default",
        enforce_max_occurrences=False,
    )


@pytest.fixture()
def repo() -> FakeTaskRepo:
    return FakeTaskRepo()


@pytest.fixture()
def state(settings: SimpleNamespace, repo: FakeTaskRepo) -> SchedulerState:
    """SchedulerState wired with the in-memory repo (tasks + dismissals)."""
    return SchedulerState(settings=settings, task_store=repo, dismissals=repo)


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")
