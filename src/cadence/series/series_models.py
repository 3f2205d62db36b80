# src/cadence/series/series_models.py

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import StrEnum

from ..recurrence.rule import RecurrenceRule


class SeriesStatus(StrEnum):
    """
    Series lifecycle.

    Only ACTIVE series are evaluated by the scheduler. The other states are
    terminal: a series is deactivated, never deleted.
    """

    ACTIVE = "active"
    EXHAUSTED = "exhausted"  # end condition reached or calendar range exceeded
    STOPPED = "stopped"  # stopped by the user
    ERRORED = "errored"  # calculation overflow, needs operator attention

    @classmethod
    def from_db(cls, raw: str | None) -> SeriesStatus:
        if not raw:
            return cls.ACTIVE
        try:
            return cls(raw)
        except ValueError:
            return cls.ERRORED


def dedupe_key(series_id: str, occurrence: date) -> str:
    """Deterministic per-occurrence key used as the task store's duplicate guard."""
    return f"{series_id}:{occurrence.isoformat()}"


@dataclass(frozen=True, slots=True)
class SeriesState:
    series_id: str
    rule: RecurrenceRule
    anchor_date: date
    parent_task_id: int

    skip_dates: tuple[date, ...] = ()
    generated_count: int = 0
    last_generated_occurrence: date | None = None

    # Occurrence whose task creation is in flight, claimed by the CAS that
    # set it. The watermark only moves once the task exists.
    pending_occurrence: date | None = None
    pending_claimed_at: float | None = None

    status: SeriesStatus = SeriesStatus.ACTIVE
    last_error: str | None = None
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "skip_dates", tuple(sorted(set(self.skip_dates))))

    @property
    def active(self) -> bool:
        return self.status is SeriesStatus.ACTIVE

    @property
    def watermark(self) -> date:
        """Exclusive lower bound for the next occurrence (in-flight claims included)."""
        return self.pending_occurrence or self.last_generated_occurrence or self.anchor_date

    @property
    def scheduled_count(self) -> int:
        return self.generated_count + (1 if self.pending_occurrence is not None else 0)

    def with_skip(self, day: date) -> SeriesState:
        return replace(self, skip_dates=(*self.skip_dates, day))

    def without_skip(self, day: date) -> SeriesState:
        return replace(self, skip_dates=tuple(d for d in self.skip_dates if d != day))

    def claimed(self, occurrence: date, claimed_at: float) -> SeriesState:
        return replace(self, pending_occurrence=occurrence, pending_claimed_at=claimed_at)

    def released(self) -> SeriesState:
        return replace(self, pending_occurrence=None, pending_claimed_at=None)

    def finalized(self, occurrence: date) -> SeriesState:
        """Advance the watermark past a materialized occurrence and drop the claim."""
        if self.last_generated_occurrence is not None and occurrence <= self.last_generated_occurrence:
            return self.released()
        return replace(
            self.released(),
            last_generated_occurrence=occurrence,
            generated_count=self.generated_count + 1,
        )

    def deactivated(self, status: SeriesStatus, error: str | None = None) -> SeriesState:
        return replace(self, status=status, last_error=error)
