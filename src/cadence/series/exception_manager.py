# src/cadence/series/exception_manager.py

"""
Exception (skip date) management for a series.

Every mutation is validated against the task store before it is written, so a
date that already has a materialized task can never be turned into a skip.
Removing a skip date never deletes a task: dates at or before the watermark
are behind the scheduler and stay that way.
"""

from __future__ import annotations

import logging
from datetime import date

from ..core.errors import AlreadyMaterialized
from ..core.ports import SeriesStateRepository, TaskRepo
from ..recurrence.calculator import DEFAULT_MAX_STEPS, compute_next
from .cas import DEFAULT_CAS_ATTEMPTS, update_series
from .series_models import SeriesState

logger = logging.getLogger(__name__)


class ExceptionManager:
    def __init__(
        self,
        series_repo: SeriesStateRepository,
        task_repo: TaskRepo,
        *,
        cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self._series = series_repo
        self._tasks = task_repo
        self._cas_attempts = cas_attempts
        self._max_steps = max_steps

    def _ensure_not_materialized(self, state: SeriesState, day: date) -> None:
        if state.pending_occurrence == day:
            raise AlreadyMaterialized(f"{day.isoformat()} is being materialized for series {state.series_id}")
        task_id = self._tasks.get_task_by_dedupe_key(state.series_id, day)
        if task_id is not None:
            raise AlreadyMaterialized(
                f"{day.isoformat()} already materialized for series {state.series_id} (task {task_id})"
            )

    def add_skip_date(self, series_id: str, day: date) -> bool:
        """Returns False if the date was already skipped."""
        added = False

        def mutate(state: SeriesState) -> SeriesState | None:
            nonlocal added
            added = False
            if day in state.skip_dates:
                return None
            self._ensure_not_materialized(state, day)
            added = True
            return state.with_skip(day)

        update_series(self._series, series_id, mutate, attempts=self._cas_attempts)
        if added:
            logger.info("Skip date added series=%s date=%s", series_id, day)
        return added

    def remove_skip_date(self, series_id: str, day: date) -> bool:
        """
        Returns False for a no-op (date not skipped).

        A removed date at or before the watermark is not resurrected: the
        scheduler only looks forward from the watermark.
        """
        removed = False

        def mutate(state: SeriesState) -> SeriesState | None:
            nonlocal removed
            removed = day in state.skip_dates
            return state.without_skip(day) if removed else None

        update_series(self._series, series_id, mutate, attempts=self._cas_attempts)
        if removed:
            logger.info("Skip date removed series=%s date=%s", series_id, day)
        return removed

    def skip_next(self, series_id: str) -> date | None:
        """
        Add the next scheduled occurrence to the skip set without materializing it.

        Returns the skipped date, or None when the series has nothing left to
        schedule (inactive, end condition reached, calendar exhausted).
        """
        skipped: date | None = None

        def mutate(state: SeriesState) -> SeriesState | None:
            nonlocal skipped
            skipped = None
            if not state.active:
                return None
            occurrence = compute_next(
                state.rule, state.anchor_date, state.watermark, state.skip_dates, max_steps=self._max_steps
            )
            if occurrence is None or state.rule.end.is_reached(occurrence, state.scheduled_count):
                return None
            self._ensure_not_materialized(state, occurrence)
            skipped = occurrence
            return state.with_skip(occurrence)

        update_series(self._series, series_id, mutate, attempts=self._cas_attempts)
        if skipped is not None:
            logger.info("Next occurrence skipped series=%s date=%s", series_id, skipped)
        return skipped
