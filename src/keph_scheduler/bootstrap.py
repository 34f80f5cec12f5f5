# src/keph_scheduler/bootstrap.py

"""
Composition root for hosts that use the bundled SQLite store.

- loads settings once (or takes injected ones),
- ensures local (gitignored) directories exist,
- wires the store into SchedulerState, both as task repo and as dismissal repo.
"""

from __future__ import annotations

import logging

from .config import Settings, get_settings
from .core.state import SchedulerState
from .logging_setup import level_from_name, setup_logging
from .tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.log_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings: Settings | None = None, configure_logging: bool = False) -> SchedulerState:
    """
    Create SchedulerState from the provided settings.

    Keeping settings injectable makes the host easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if configure_logging:
        setup_logging(log_dir=settings.log_dir, console_level=level_from_name(settings.log_level))

    store = TaskStore(settings.tasks_db_path)
    logger.info("Starting %s (default account=%s)", settings.app_name, settings.default_account_id)

    return SchedulerState(settings=settings, task_store=store, dismissals=store)
