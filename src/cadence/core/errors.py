# src/cadence/core/errors.py

"""
Error hierarchy shared by the engine and its storage adapters.

User-facing operations raise these directly. The scheduler catches them per
series and reports them in its TickReport instead of raising out of tick().
"""

from __future__ import annotations


class CadenceError(Exception):
    """Base class for all engine errors."""


class InvalidRule(CadenceError, ValueError):
    """A recurrence rule field is out of range or does not fit the frequency."""


class CalculationOverflow(CadenceError):
    """The occurrence calculator hit its iteration cap without finding a date."""

    def __init__(self, steps: int, message: str | None = None) -> None:
        self.steps = steps
        super().__init__(message or f"No occurrence found within {steps} steps")


class AlreadyMaterialized(CadenceError):
    """A skip date conflicts with an occurrence that already has a task."""


class ConcurrentUpdateConflict(CadenceError):
    """Compare-and-swap on a series kept losing to concurrent writers."""


class TaskStoreUnavailable(CadenceError):
    """The task store could not be reached or failed during I/O."""


class DuplicateKeyError(CadenceError):
    """A task with the same dedupe key already exists."""

    def __init__(self, dedupe_key: str, task_id: int | None = None) -> None:
        self.dedupe_key = dedupe_key
        self.task_id = task_id
        super().__init__(f"Task with dedupe key {dedupe_key!r} already exists")


class SeriesNotFound(CadenceError, KeyError):
    def __init__(self, series_id: str) -> None:
        self.series_id = series_id
        super().__init__(series_id)

    def __str__(self) -> str:
        return f"Series not found: {self.series_id}"


class ParentTaskNotFound(CadenceError, LookupError):
    """The template task a series copies from does not exist."""

    def __init__(self, parent_task_id: int) -> None:
        self.parent_task_id = parent_task_id
        super().__init__(f"Parent task {parent_task_id} not found")


class CorruptSeriesRecord(CadenceError):
    """A stored series row could not be decoded; the row has been marked errored."""

    def __init__(self, series_id: str, reason: str) -> None:
        self.series_id = series_id
        self.reason = reason
        super().__init__(f"Series {series_id} has an unreadable record: {reason}")


class SeriesInactive(CadenceError):
    """The operation needs an active series (edit pattern on a stopped/exhausted one)."""
