# tests/fakes.py

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, timedelta

from cadence.core.errors import DuplicateKeyError, ParentTaskNotFound, SeriesNotFound, TaskStoreUnavailable
from cadence.series.series_models import SeriesState, dedupe_key


class FakeClock:
    """Settable clock. advance() moves the calendar forward by whole days."""

    def __init__(self, today: date) -> None:
        self.today = today

    def now(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> date:
        self.today = self.today + timedelta(days=days)
        return self.today


class FakeTaskRepo:
    """
    In-memory TaskRepo used for scheduler unit tests.

    Enforces dedupe keys like the SQLite store does. `fail_next` makes the
    next N creations raise TaskStoreUnavailable. Parents listed in
    `missing_parents` raise ParentTaskNotFound.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_id = 1
        self.created: dict[str, tuple[int, int, date]] = {}
        self.fail_next = 0
        self.missing_parents: set[int] = set()
        self.create_calls = 0

    def create_task_from_template(self, parent_task_id: int, due_date: date, dedupe_key: str) -> int:
        with self._lock:
            self.create_calls += 1
            if self.fail_next > 0:
                self.fail_next -= 1
                raise TaskStoreUnavailable("task store is down")
            if parent_task_id in self.missing_parents:
                raise ParentTaskNotFound(parent_task_id)
            if dedupe_key in self.created:
                raise DuplicateKeyError(dedupe_key, self.created[dedupe_key][0])
            task_id = self._next_id
            self._next_id += 1
            self.created[dedupe_key] = (task_id, parent_task_id, due_date)
            return task_id

    def get_task_by_dedupe_key(self, series_id: str, day: date) -> int | None:
        with self._lock:
            hit = self.created.get(dedupe_key(series_id, day))
            return hit[0] if hit else None

    def due_dates(self) -> list[date]:
        with self._lock:
            return sorted(v[2] for v in self.created.values())


class FakeSeriesRepo:
    """
    Thread-safe in-memory SeriesStateRepository.

    hold_first_reads(n) makes the next n get() calls wait for each other, so n
    workers start from the same snapshot and race on compare_and_swap.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, SeriesState] = {}
        self._order: list[str] = []
        self._barrier: threading.Barrier | None = None
        self._barrier_slots = 0
        self.cas_calls = 0
        self.cas_failures_left = 0

    def hold_first_reads(self, n: int) -> None:
        self._barrier = threading.Barrier(n, timeout=5.0)
        self._barrier_slots = n

    def create(self, state: SeriesState) -> str:
        with self._lock:
            series_id = state.series_id or f"s{len(self._rows) + 1}"
            self._rows[series_id] = replace(state, series_id=series_id, version=0)
            self._order.append(series_id)
            return series_id

    def get(self, series_id: str) -> tuple[SeriesState, int]:
        barrier = None
        with self._lock:
            if self._barrier is not None and self._barrier_slots > 0:
                self._barrier_slots -= 1
                barrier = self._barrier
        if barrier is not None:
            barrier.wait()

        with self._lock:
            state = self._rows.get(series_id)
            if state is None:
                raise SeriesNotFound(series_id)
            return state, state.version

    def compare_and_swap(self, series_id: str, expected_version: int, new_state: SeriesState) -> bool:
        with self._lock:
            self.cas_calls += 1
            if self.cas_failures_left > 0:
                self.cas_failures_left -= 1
                return False
            current = self._rows.get(series_id)
            if current is None or current.version != expected_version:
                return False
            self._rows[series_id] = replace(new_state, series_id=series_id, version=expected_version + 1)
            return True

    def list_series_ids(self, *, active_only: bool = True) -> list[str]:
        with self._lock:
            return [sid for sid in self._order if not active_only or self._rows[sid].active]

    def put(self, state: SeriesState) -> None:
        """Overwrite a row directly (simulates a crashed writer)."""
        with self._lock:
            current = self._rows[state.series_id]
            self._rows[state.series_id] = replace(state, version=current.version + 1)
