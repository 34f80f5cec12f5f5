# tests/test_recurrence.py

from __future__ import annotations

from datetime import datetime

import pytest

from keph_scheduler.tasks.recurrence import (
    format_recurrence_display,
    next_due_date,
    should_generate_next,
)
from keph_scheduler.tasks.task_models import (
    InvalidRecurrenceError,
    RecurrenceConfig,
    RecurrenceType,
    TaskStatus,
)

BASE = datetime(2024, 1, 1, 10, 30)


@pytest.mark.parametrize(
    ("kind", "interval", "expected"),
    [
        (RecurrenceType.DAILY, 1, datetime(2024, 1, 2, 10, 30)),
        (RecurrenceType.DAILY, 3, datetime(2024, 1, 4, 10, 30)),
        (RecurrenceType.WEEKLY, 1, datetime(2024, 1, 8, 10, 30)),
        (RecurrenceType.WEEKLY, 2, datetime(2024, 1, 15, 10, 30)),
        (RecurrenceType.MONTHLY, 1, datetime(2024, 2, 1, 10, 30)),
        (RecurrenceType.MONTHLY, 14, datetime(2025, 3, 1, 10, 30)),
        (RecurrenceType.YEARLY, 1, datetime(2025, 1, 1, 10, 30)),
        (RecurrenceType.YEARLY, 5, datetime(2029, 1, 1, 10, 30)),
    ],
)
def test_next_due_date_advances_by_interval(kind, interval, expected) -> None:
    cfg = RecurrenceConfig(type=kind, interval=interval)
    assert next_due_date(BASE, cfg) == expected


def test_next_due_date_none_is_identity() -> None:
    cfg = RecurrenceConfig(type=RecurrenceType.NONE, interval=4)
    assert next_due_date(BASE, cfg) == BASE


def test_monthly_clamps_to_end_of_month() -> None:
    cfg = RecurrenceConfig(type=RecurrenceType.MONTHLY, interval=1)
    assert next_due_date(datetime(2024, 1, 31), cfg) == datetime(2024, 2, 29)
    assert next_due_date(datetime(2023, 1, 31), cfg) == datetime(2023, 2, 28)


def test_yearly_from_leap_day_clamps() -> None:
    cfg = RecurrenceConfig(type=RecurrenceType.YEARLY, interval=1)
    assert next_due_date(datetime(2024, 2, 29), cfg) == datetime(2025, 2, 28)


@pytest.mark.parametrize("interval", [0, -1, 1.5, True])
def test_config_rejects_bad_interval(interval) -> None:
    with pytest.raises(InvalidRecurrenceError):
        RecurrenceConfig(type=RecurrenceType.DAILY, interval=interval)


def test_config_rejects_unknown_cadence() -> None:
    with pytest.raises(InvalidRecurrenceError):
        RecurrenceConfig(type="fortnightly")  # type: ignore[arg-type]


def test_config_rejects_non_positive_max_occurrences() -> None:
    with pytest.raises(InvalidRecurrenceError):
        RecurrenceConfig(type=RecurrenceType.DAILY, max_occurrences=0)


def test_config_normalizes_raw_type() -> None:
    cfg = RecurrenceConfig(type=" Weekly ")  # type: ignore[arg-type]
    assert cfg.type is RecurrenceType.WEEKLY
    assert isinstance(InvalidRecurrenceError("x"), ValueError)


def test_should_generate_requires_completed(make_task, weekly) -> None:
    for status in (TaskStatus.CURRENT, TaskStatus.PENDING):
        task = make_task(status=status, due_date=BASE, recurrence=weekly)
        assert should_generate_next(task, BASE) is False

    done = make_task(status=TaskStatus.COMPLETED, due_date=BASE, recurrence=weekly)
    assert should_generate_next(done, BASE) is True


def test_should_generate_requires_due_date_and_recurrence(make_task, weekly) -> None:
    assert should_generate_next(make_task(status=TaskStatus.COMPLETED, recurrence=weekly), BASE) is False
    assert should_generate_next(make_task(status=TaskStatus.COMPLETED, due_date=BASE), BASE) is False

    none_cfg = RecurrenceConfig(type=RecurrenceType.NONE)
    task = make_task(status=TaskStatus.COMPLETED, due_date=BASE, recurrence=none_cfg)
    assert should_generate_next(task, BASE) is False


def test_should_generate_respects_end_date(make_task) -> None:
    stop_before = RecurrenceConfig(type=RecurrenceType.WEEKLY, end_date=datetime(2024, 1, 5))
    task = make_task(status=TaskStatus.COMPLETED, due_date=BASE, recurrence=stop_before)
    assert should_generate_next(task, datetime(2024, 1, 8)) is False

    # Next occurrence landing exactly on the end date is still allowed.
    stop_on = RecurrenceConfig(type=RecurrenceType.WEEKLY, end_date=datetime(2024, 1, 8, 10, 30))
    task = make_task(status=TaskStatus.COMPLETED, due_date=BASE, recurrence=stop_on)
    assert should_generate_next(task, datetime(2024, 1, 8)) is True


def test_should_generate_ignores_now_and_max_occurrences(make_task) -> None:
    cfg = RecurrenceConfig(type=RecurrenceType.DAILY, max_occurrences=1)
    task = make_task(status=TaskStatus.COMPLETED, due_date=BASE, recurrence=cfg)
    assert should_generate_next(task, datetime(1990, 1, 1)) is True
    assert should_generate_next(task, datetime(2100, 1, 1)) is True


@pytest.mark.parametrize(
    ("cfg", "expected"),
    [
        (None, "No repeat"),
        (RecurrenceConfig(type=RecurrenceType.NONE), "No repeat"),
        (RecurrenceConfig(type=RecurrenceType.DAILY), "Daily"),
        (RecurrenceConfig(type=RecurrenceType.MONTHLY, interval=3), "Every 3 months"),
        (
            RecurrenceConfig(
                type=RecurrenceType.WEEKLY,
                interval=2,
                end_date=datetime(2024, 3, 1),
                max_occurrences=5,
            ),
            "Every 2 weeks (until 2024-03-01, for 5 times)",
        ),
    ],
)
def test_format_recurrence_display(cfg, expected) -> None:
    assert format_recurrence_display(cfg) == expected
