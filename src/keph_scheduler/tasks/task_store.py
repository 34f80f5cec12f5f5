# src/keph_scheduler/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from .task_models import (
    InvalidRecurrenceError,
    RecurrenceConfig,
    RecurrenceType,
    Subtask,
    Task,
    TaskInstanceSpec,
    TaskStatus,
    TaskUpdate,
    TaskUrl,
)

logger = logging.getLogger(__name__)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unparseable datetime in tasks DB: %r", value)
        return None


class TaskStore:
    """
    SQLite reference store for the host side of the scheduler.

    Column names follow the hosted schema the app syncs with
    (recurrence_type, recurrence_interval, parent_recurring_task_id, ...).

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Batch writes (add_instances, apply_updates) run in one transaction: either
    every row lands or none does.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'current',
                    created_at TEXT NOT NULL,
                    notes TEXT,
                    due_date TEXT,
                    completed_at TEXT,
                    category TEXT,
                    recurrence_type TEXT NOT NULL DEFAULT 'none',
                    recurrence_interval INTEGER,
                    recurrence_end_date TEXT,
                    recurrence_max_occurrences INTEGER,
                    parent_recurring_task_id TEXT,
                    is_recurring_instance INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS subtasks (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    position INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_urls (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    url TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS dismissed_notifications (
                    account_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    PRIMARY KEY (account_id, key)
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            # Recurrence columns arrived after the first schema.
            add_col("category", "TEXT")
            add_col("recurrence_type", "TEXT NOT NULL DEFAULT 'none'")
            add_col("recurrence_interval", "INTEGER")
            add_col("recurrence_end_date", "TEXT")
            add_col("recurrence_max_occurrences", "INTEGER")
            add_col("parent_recurring_task_id", "TEXT")
            add_col("is_recurring_instance", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_account_status ON tasks(account_id, status)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_series "
                "ON tasks(parent_recurring_task_id, due_date)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_subtasks_task ON subtasks(task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_task_urls_task ON task_urls(task_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _recurrence_from_row(row: sqlite3.Row) -> RecurrenceConfig | None:
        raw_type = row["recurrence_type"]
        if not raw_type or raw_type == RecurrenceType.NONE.value:
            return None
        try:
            return RecurrenceConfig(
                type=RecurrenceType.parse(raw_type),
                interval=int(row["recurrence_interval"] or 1),
                end_date=_str_to_dt(row["recurrence_end_date"]),
                max_occurrences=row["recurrence_max_occurrences"] or None,
            )
        except InvalidRecurrenceError:
            logger.warning("Ignoring invalid recurrence on task id=%s type=%r", row["id"], raw_type)
            return None

    @staticmethod
    def _recurrence_columns(rec: RecurrenceConfig | None) -> tuple[Any, ...]:
        if rec is None or not rec.repeats:
            return (RecurrenceType.NONE.value, None, None, None)
        return (rec.type.value, rec.interval, _dt_to_str(rec.end_date), rec.max_occurrences)

    def _row_to_task(
        self,
        row: sqlite3.Row,
        subtasks: list[Subtask],
        urls: list[TaskUrl],
    ) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=_str_to_dt(row["created_at"]),
            notes=row["notes"],
            due_date=_str_to_dt(row["due_date"]),
            completed_at=_str_to_dt(row["completed_at"]),
            category=row["category"],
            recurrence=self._recurrence_from_row(row),
            parent_recurring_task_id=row["parent_recurring_task_id"] or None,
            is_recurring_instance=bool(row["is_recurring_instance"]),
            subtasks=subtasks,
            urls=urls,
        )

    @staticmethod
    def _insert_children(
        cur: sqlite3.Cursor, task_id: str, subtasks: Iterable[Subtask], urls: Iterable[TaskUrl]
    ) -> None:
        for pos, st in enumerate(subtasks):
            cur.execute(
                "INSERT INTO subtasks(id, task_id, title, completed, position) VALUES (?, ?, ?, ?, ?)",
                (st.id, task_id, st.title, int(bool(st.completed)), pos),
            )
        for pos, u in enumerate(urls):
            cur.execute(
                "INSERT INTO task_urls(id, task_id, url, position) VALUES (?, ?, ?, ?)",
                (u.id, task_id, u.value, pos),
            )

    def _insert_task(
        self,
        cur: sqlite3.Cursor,
        *,
        account_id: str,
        title: str,
        status: TaskStatus,
        created_at: datetime,
        notes: str | None,
        due_date: datetime | None,
        completed_at: datetime | None,
        category: str | None,
        recurrence: RecurrenceConfig | None,
        parent_recurring_task_id: str | None,
        is_recurring_instance: bool,
        subtasks: Iterable[Subtask],
        urls: Iterable[TaskUrl],
    ) -> str:
        task_id = str(uuid.uuid4())
        cur.execute(
            """
            INSERT INTO tasks(
                id, account_id, title, status, created_at,
                notes, due_date, completed_at, category,
                recurrence_type, recurrence_interval, recurrence_end_date, recurrence_max_occurrences,
                parent_recurring_task_id, is_recurring_instance
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                account_id,
                title.strip(),
                status.value,
                _dt_to_str(created_at),
                notes,
                _dt_to_str(due_date),
                _dt_to_str(completed_at),
                category,
                *self._recurrence_columns(recurrence),
                parent_recurring_task_id,
                int(bool(is_recurring_instance)),
            ),
        )
        self._insert_children(cur, task_id, subtasks, urls)
        return task_id

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        account_id: str,
        *,
        title: str,
        status: TaskStatus = TaskStatus.CURRENT,
        created_at: datetime | None = None,
        notes: str | None = None,
        due_date: datetime | None = None,
        completed_at: datetime | None = None,
        category: str | None = None,
        recurrence: RecurrenceConfig | None = None,
        subtasks: Iterable[Subtask] = (),
        urls: Iterable[TaskUrl] = (),
    ) -> str:
        """Insert a user-created task (never an instance) and return its new id."""
        if not title or not title.strip():
            raise ValueError("title is required")

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            task_id = self._insert_task(
                cur,
                account_id=account_id,
                title=title,
                status=status,
                created_at=created_at or datetime.now(),
                notes=notes,
                due_date=due_date,
                completed_at=completed_at,
                category=category,
                recurrence=recurrence,
                parent_recurring_task_id=None,
                is_recurring_instance=False,
                subtasks=subtasks,
                urls=urls,
            )
            conn.commit()
            logger.debug("Task added id=%s account=%s status=%s due=%s", task_id, account_id, status.value, due_date)
            return task_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def add_instances(
        self,
        account_id: str,
        instances: list[TaskInstanceSpec],
        *,
        created_at: datetime | None = None,
    ) -> list[str]:
        """Persist planned recurring instances in a single transaction."""
        if not instances:
            return []

        stamp = created_at or datetime.now()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            ids = [
                self._insert_task(
                    cur,
                    account_id=account_id,
                    title=spec.title,
                    status=spec.status,
                    created_at=stamp,
                    notes=spec.notes,
                    due_date=spec.due_date,
                    completed_at=None,
                    category=spec.category,
                    recurrence=spec.recurrence,
                    parent_recurring_task_id=spec.parent_recurring_task_id,
                    is_recurring_instance=spec.is_recurring_instance,
                    subtasks=spec.subtasks,
                    urls=spec.urls,
                )
                for spec in instances
            ]
            conn.commit()
            logger.info("Persisted %d recurring instance(s) account=%s", len(ids), account_id)
            return ids
        except Exception:
            conn.rollback()
            logger.exception("add_instances failed account=%s; rolled back", account_id)
            raise
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
            row = cur.fetchone()
            if row is None:
                return None
            subtasks, urls = self._load_children(cur, [task_id])
            return self._row_to_task(row, subtasks.get(task_id, []), urls.get(task_id, []))
        finally:
            conn.close()

    def list_tasks(self, account_id: str) -> list[Task]:
        """All tasks of one account, oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM tasks WHERE account_id = ? ORDER BY created_at ASC, rowid ASC",
                (account_id,),
            )
            rows = cur.fetchall()
            subtasks, urls = self._load_children(cur, [str(r["id"]) for r in rows])
            return [
                self._row_to_task(r, subtasks.get(str(r["id"]), []), urls.get(str(r["id"]), []))
                for r in rows
            ]
        finally:
            conn.close()

    @staticmethod
    def _load_children(
        cur: sqlite3.Cursor, task_ids: list[str]
    ) -> tuple[dict[str, list[Subtask]], dict[str, list[TaskUrl]]]:
        subtasks: dict[str, list[Subtask]] = {}
        urls: dict[str, list[TaskUrl]] = {}
        if not task_ids:
            return subtasks, urls

        placeholders = ",".join("?" for _ in task_ids)
        cur.execute(
            f"SELECT * FROM subtasks WHERE task_id IN ({placeholders}) ORDER BY position ASC",
            task_ids,
        )
        for r in cur.fetchall():
            subtasks.setdefault(r["task_id"], []).append(
                Subtask(id=r["id"], title=r["title"], completed=bool(r["completed"]))
            )

        cur.execute(
            f"SELECT * FROM task_urls WHERE task_id IN ({placeholders}) ORDER BY position ASC",
            task_ids,
        )
        for r in cur.fetchall():
            urls.setdefault(r["task_id"], []).append(TaskUrl(id=r["id"], value=r["url"]))

        return subtasks, urls

    def update_task_status(
        self,
        account_id: str,
        task_id: str,
        new_status: TaskStatus,
        *,
        completed_at: datetime | None = None,
    ) -> None:
        """
        Set status; completed_at is stamped when completing and cleared otherwise.

        Raises KeyError when the task does not exist under `account_id`.
        """
        if new_status == TaskStatus.COMPLETED:
            stamp = _dt_to_str(completed_at or datetime.now())
        else:
            stamp = None

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE tasks SET status = ?, completed_at = ? WHERE id = ? AND account_id = ?",
                (new_status.value, stamp, task_id, account_id),
            )
            if cur.rowcount != 1:
                raise KeyError(f"task not found: {task_id}")
            conn.commit()
        finally:
            conn.close()

    def apply_updates(self, account_id: str, updates: list[TaskUpdate]) -> None:
        """
        Apply bulk remediation requests atomically.

        Every task must belong to `account_id`; one miss rolls back the whole batch.
        """
        if not updates:
            return

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            for upd in updates:
                fields: list[str] = []
                params: list[Any] = []

                if upd.status is not None:
                    fields.append("status = ?")
                    params.append(upd.status.value)

                if upd.clear_due_date:
                    fields.append("due_date = NULL")
                elif upd.due_date is not None:
                    fields.append("due_date = ?")
                    params.append(_dt_to_str(upd.due_date))

                if not fields:
                    continue

                params.extend([upd.task_id, account_id])
                cur.execute(
                    f"UPDATE tasks SET {', '.join(fields)} WHERE id = ? AND account_id = ?",
                    params,
                )
                if cur.rowcount != 1:
                    raise KeyError(f"task not found: {upd.task_id}")

            conn.commit()
            logger.debug("Applied %d task update(s) account=%s", len(updates), account_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ---- dismissed notifications (DismissalRepo) ----

    def list_dismissals(self, account_id: str) -> set[str]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT key FROM dismissed_notifications WHERE account_id = ?", (account_id,))
            return {str(r["key"]) for r in cur.fetchall()}
        finally:
            conn.close()

    def add_dismissal(self, account_id: str, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO dismissed_notifications(account_id, key) VALUES (?, ?)",
                (account_id, key),
            )
            conn.commit()
        finally:
            conn.close()

    def remove_dismissals(self, account_id: str, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        conn = self._get_conn()
        try:
            conn.executemany(
                "DELETE FROM dismissed_notifications WHERE account_id = ? AND key = ?",
                [(account_id, k) for k in keys],
            )
            conn.commit()
        finally:
            conn.close()
