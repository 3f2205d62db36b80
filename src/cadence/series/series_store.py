# src/cadence/series/series_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import CorruptSeriesRecord, SeriesNotFound
from ..recurrence.rule import RecurrenceRule
from .series_models import SeriesState, SeriesStatus

logger = logging.getLogger(__name__)


class SeriesStore:
    """
    SQLite series repository with optimistic concurrency.

    Every row carries a monotonic `version`. compare_and_swap is a single
    UPDATE guarded by `version = expected`, so concurrent writers (threads or
    processes sharing the file) can never overwrite each other silently.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "series.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SeriesStore ready db=%s total=%s", self._db_path, self.count_series())

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS series (
                    series_id TEXT PRIMARY KEY,
                    rule TEXT NOT NULL,
                    anchor_date TEXT NOT NULL,
                    parent_task_id INTEGER NOT NULL,
                    skip_dates TEXT NOT NULL DEFAULT '[]',
                    generated_count INTEGER NOT NULL DEFAULT 0,
                    last_generated_occurrence TEXT,
                    pending_occurrence TEXT,
                    pending_claimed_at REAL,
                    status TEXT NOT NULL DEFAULT 'active',
                    last_error TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(series)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE series ADD COLUMN {name} {decl}")
                logger.info("SeriesStore migration: added column %s", name)

            add_col("pending_occurrence", "TEXT")
            add_col("pending_claimed_at", "REAL")
            add_col("last_error", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_series_status ON series(status)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _date_or_none(raw: str | None) -> date | None:
        return date.fromisoformat(raw) if raw else None

    @staticmethod
    def _skip_to_str(skip_dates: tuple[date, ...]) -> str:
        return json.dumps([d.isoformat() for d in skip_dates])

    @staticmethod
    def _str_to_skip(raw: str | None) -> tuple[date, ...]:
        if not raw:
            return ()
        values = json.loads(raw)
        return tuple(date.fromisoformat(v) for v in values if isinstance(v, str))

    def _row_to_state(self, row: sqlite3.Row) -> SeriesState:
        anchor = date.fromisoformat(row["anchor_date"])
        return SeriesState(
            series_id=str(row["series_id"]),
            rule=RecurrenceRule.from_dict(json.loads(row["rule"]), anchor=anchor),
            anchor_date=anchor,
            parent_task_id=int(row["parent_task_id"]),
            skip_dates=self._str_to_skip(row["skip_dates"]),
            generated_count=int(row["generated_count"] or 0),
            last_generated_occurrence=self._date_or_none(row["last_generated_occurrence"]),
            pending_occurrence=self._date_or_none(row["pending_occurrence"]),
            pending_claimed_at=row["pending_claimed_at"],
            status=SeriesStatus.from_db(row["status"]),
            last_error=row["last_error"],
            version=int(row["version"]),
        )

    def _state_params(self, state: SeriesState) -> dict[str, Any]:
        return {
            "rule": json.dumps(state.rule.to_dict()),
            "anchor_date": state.anchor_date.isoformat(),
            "parent_task_id": int(state.parent_task_id),
            "skip_dates": self._skip_to_str(state.skip_dates),
            "generated_count": int(state.generated_count),
            "last_generated_occurrence": (
                state.last_generated_occurrence.isoformat() if state.last_generated_occurrence else None
            ),
            "pending_occurrence": state.pending_occurrence.isoformat() if state.pending_occurrence else None,
            "pending_claimed_at": state.pending_claimed_at,
            "status": state.status.value,
            "last_error": state.last_error,
        }

    # ---- public API ----

    def count_series(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM series").fetchone()
            return int(n)
        finally:
            conn.close()

    def create(self, state: SeriesState) -> str:
        """Insert a new series at version 0. Generates a series_id when the state has none."""
        series_id = state.series_id or uuid.uuid4().hex
        state = replace(state, series_id=series_id, version=0)
        params = self._state_params(state)
        now = time.time()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO series(
                    series_id, rule, anchor_date, parent_task_id, skip_dates,
                    generated_count, last_generated_occurrence, pending_occurrence, pending_claimed_at,
                    status, last_error, version, created_at, updated_at
                )
                VALUES (
                    :series_id, :rule, :anchor_date, :parent_task_id, :skip_dates,
                    :generated_count, :last_generated_occurrence, :pending_occurrence, :pending_claimed_at,
                    :status, :last_error, 0, :now, :now
                )
                """,
                {**params, "series_id": series_id, "now": now},
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Series created id=%s rule=%s", series_id, params["rule"])
        return series_id

    def get(self, series_id: str) -> tuple[SeriesState, int]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM series WHERE series_id = ?", (series_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise SeriesNotFound(series_id)
        try:
            state = self._row_to_state(row)
        except (ValueError, TypeError) as e:
            reason = f"{type(e).__name__}: {e}"
            self._quarantine(series_id, int(row["version"]), reason)
            raise CorruptSeriesRecord(series_id, reason) from e
        return state, state.version

    def _quarantine(self, series_id: str, version: int, reason: str) -> None:
        """Mark an undecodable row errored so active scans stop picking it up."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE series
                SET status = ?, last_error = ?, version = version + 1, updated_at = ?
                WHERE series_id = ? AND version = ? AND status = 'active'
                """,
                (SeriesStatus.ERRORED.value, reason, time.time(), series_id, version),
            )
            conn.commit()
            changed = cur.rowcount == 1
        finally:
            conn.close()

        if changed:
            logger.error("Series record unreadable, marked errored series=%s: %s", series_id, reason)

    def compare_and_swap(self, series_id: str, expected_version: int, new_state: SeriesState) -> bool:
        """
        Atomically:
          version == expected_version -> write new_state, version = expected_version + 1

        Returns True if this caller's write won.
        """
        params = self._state_params(new_state)
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE series
                SET rule = :rule,
                    anchor_date = :anchor_date,
                    parent_task_id = :parent_task_id,
                    skip_dates = :skip_dates,
                    generated_count = :generated_count,
                    last_generated_occurrence = :last_generated_occurrence,
                    pending_occurrence = :pending_occurrence,
                    pending_claimed_at = :pending_claimed_at,
                    status = :status,
                    last_error = :last_error,
                    version = version + 1,
                    updated_at = :now
                WHERE series_id = :series_id
                  AND version = :expected
                """,
                {**params, "series_id": series_id, "expected": int(expected_version), "now": time.time()},
            )
            conn.commit()
            won = cur.rowcount == 1
        finally:
            conn.close()

        if not won:
            logger.debug("CAS lost series=%s expected_version=%s", series_id, expected_version)
        return won

    def list_series_ids(self, *, active_only: bool = True) -> list[str]:
        conn = self._get_conn()
        try:
            if active_only:
                rows = conn.execute(
                    "SELECT series_id FROM series WHERE status = 'active' ORDER BY created_at ASC, rowid ASC"
                ).fetchall()
            else:
                rows = conn.execute("SELECT series_id FROM series ORDER BY created_at ASC, rowid ASC").fetchall()
            return [str(r["series_id"]) for r in rows]
        finally:
            conn.close()
