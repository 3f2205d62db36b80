# src/cadence/core/ports.py

"""
Ports (interfaces) used by the core.

The engine depends on Protocols instead of concrete implementations.
This keeps the clock, the task store and the series persistence swappable
and makes scheduler tests deterministic.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..series.series_models import SeriesState


class Clock(Protocol):
    """Single canonical clock. The engine only reasons in whole dates."""

    def now(self) -> date: ...


class SystemClock:
    """Clock backed by the local calendar date."""

    def now(self) -> date:
        return date.today()


class TaskRepo(Protocol):
    """
    Task store collaborator.

    create_task_from_template copies the parent task into a new instance due on
    due_date. It must raise DuplicateKeyError when dedupe_key is already used,
    ParentTaskNotFound when the parent is gone and TaskStoreUnavailable on I/O
    failure. Only TaskStoreUnavailable is retried by the scheduler.
    """

    def create_task_from_template(self, parent_task_id: int, due_date: date, dedupe_key: str) -> int: ...

    def get_task_by_dedupe_key(self, series_id: str, day: date) -> int | None: ...


class SeriesStateRepository(Protocol):
    """
    Series persistence with optimistic concurrency.

    compare_and_swap writes new_state only if the stored version still equals
    expected_version, bumping the version by one. Returns False otherwise.
    """

    def create(self, state: SeriesState) -> str: ...

    def get(self, series_id: str) -> tuple[SeriesState, int]: ...

    def compare_and_swap(self, series_id: str, expected_version: int, new_state: SeriesState) -> bool: ...

    def list_series_ids(self, *, active_only: bool = True) -> list[str]: ...
