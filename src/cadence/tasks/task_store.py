# src/cadence/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import DuplicateKeyError, ParentTaskNotFound, TaskStoreUnavailable
from ..series.series_models import dedupe_key as make_dedupe_key
from .task_models import Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    Recurring instances are copies of a parent (template) task. The unique
    index on dedupe_key is the last line of defence against double
    materialization: a second insert with the same key raises DuplicateKeyError.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    status TEXT NOT NULL DEFAULT 'To Do',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    due_date TEXT,
                    title TEXT NOT NULL,
                    description TEXT,
                    priority TEXT NOT NULL DEFAULT 'Medium',
                    tags TEXT NOT NULL DEFAULT '[]',
                    meta TEXT NOT NULL DEFAULT '{}',
                    recurrence_parent_id INTEGER,
                    dedupe_key TEXT
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

            add_col("tags", "TEXT NOT NULL DEFAULT '[]'")
            add_col("meta", "TEXT NOT NULL DEFAULT '{}'")
            add_col("recurrence_parent_id", "INTEGER")
            add_col("dedupe_key", "TEXT")

            cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_dedupe ON tasks(dedupe_key)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(recurrence_parent_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due_status ON tasks(status, due_date)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _json_to_str(value: Any, default: str) -> str:
        if not value:
            return default
        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode %r; storing %s.", value, default)
            return default

    @staticmethod
    def _str_to_json(s: str | None, kind: type) -> Any:
        if not s:
            return kind()
        try:
            val = json.loads(s)
        except ValueError:
            return kind()
        return val if isinstance(val, kind) else kind()

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
            title=str(row["title"] or ""),
            description=row["description"],
            priority=TaskPriority(row["priority"] or TaskPriority.MEDIUM),
            tags=self._str_to_json(row["tags"], list),
            meta=self._str_to_json(row["meta"], dict),
            recurrence_parent_id=row["recurrence_parent_id"],
            dedupe_key=row["dedupe_key"],
        )

    def _find_id_by_key(self, conn: sqlite3.Connection, key: str) -> int | None:
        row = conn.execute("SELECT id FROM tasks WHERE dedupe_key = ?", (key,)).fetchone()
        return int(row["id"]) if row else None

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        title: str,
        description: str | None = None,
        due_date: date | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        status: TaskStatus = TaskStatus.TODO,
        tags: list[str] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> int:
        """Create a standalone task (used for series parents / templates)."""
        if not title or not title.strip():
            raise ValueError("title is required")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO tasks(status, created_at, updated_at, due_date, title, description,
                                  priority, tags, meta)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    status.value,
                    now,
                    now,
                    due_date.isoformat() if due_date else None,
                    title.strip(),
                    description,
                    TaskPriority(priority).value,
                    self._json_to_str(tags, "[]"),
                    self._json_to_str(meta, "{}"),
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug("Task added id=%s title=%r due=%s", task_id, title, due_date)
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def create_task_from_template(self, parent_task_id: int, due_date: date, dedupe_key: str) -> int:
        """
        Copy the parent task into a fresh instance due on due_date.

        Raises:
        - DuplicateKeyError if an instance with dedupe_key already exists
        - TaskStoreUnavailable on any other storage failure
        - ParentTaskNotFound if the parent task does not exist
        """
        now = time.time()
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise TaskStoreUnavailable(str(e)) from e

        try:
            parent = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(parent_task_id),)).fetchone()
            if parent is None:
                raise ParentTaskNotFound(int(parent_task_id))

            cur = conn.execute(
                """
                INSERT INTO tasks(status, created_at, updated_at, due_date, title, description,
                                  priority, tags, meta, recurrence_parent_id, dedupe_key)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    TaskStatus.TODO.value,
                    now,
                    now,
                    due_date.isoformat(),
                    parent["title"],
                    parent["description"],
                    parent["priority"],
                    parent["tags"],
                    parent["meta"],
                    int(parent_task_id),
                    dedupe_key,
                ),
            )
            conn.commit()
            task_id = int(cur.lastrowid or 0)
        except sqlite3.IntegrityError as e:
            conn.rollback()
            existing = self._find_id_by_key(conn, dedupe_key)
            if existing is None:
                raise TaskStoreUnavailable(str(e)) from e
            raise DuplicateKeyError(dedupe_key, existing) from e
        except sqlite3.Error as e:
            raise TaskStoreUnavailable(str(e)) from e
        finally:
            conn.close()

        logger.debug("Task instance id=%s parent=%s due=%s key=%s", task_id, parent_task_id, due_date, dedupe_key)
        return task_id

    def get_task_by_dedupe_key(self, series_id: str, day: date) -> int | None:
        key = make_dedupe_key(series_id, day)
        try:
            conn = self._get_conn()
            try:
                return self._find_id_by_key(conn, key)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise TaskStoreUnavailable(str(e)) from e

    def list_series_instances(self, series_id: str) -> list[Task]:
        """Instances materialized for a series, oldest due date first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE dedupe_key LIKE ?
                ORDER BY due_date ASC, id ASC
                """,
                (f"{series_id}:%",),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()
