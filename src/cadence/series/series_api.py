# src/cadence/series/series_api.py

"""
Operations exposed to the thin API/CLI layer.

All helpers take the AppState built by the composition root
(cli/bootstrap.py) and delegate to the stores, the ExceptionManager and the
calculator. Errors from core.errors propagate to the caller unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from typing import Any

from ..core.errors import CorruptSeriesRecord, ParentTaskNotFound, SeriesInactive
from ..core.state import AppState
from ..recurrence.calculator import OccurrencePreview, compute_next, iter_occurrences
from ..recurrence.rule import RecurrenceRule
from .cas import update_series
from .series_models import SeriesState, SeriesStatus

logger = logging.getLogger(__name__)


def _coerce_rule(rule: RecurrenceRule | Mapping[str, Any], anchor_date: date) -> RecurrenceRule:
    if isinstance(rule, RecurrenceRule):
        return rule.with_anchor_defaults(anchor_date)
    return RecurrenceRule.from_dict(rule, anchor=anchor_date)


def _cas_attempts(state: AppState) -> int:
    return int(getattr(state.settings, "user_cas_max_attempts", 10))


def _max_steps(state: AppState) -> int:
    return int(getattr(state.settings, "max_calculation_steps", 10_000))


def create_series(
    state: AppState,
    rule: RecurrenceRule | Mapping[str, Any],
    anchor_date: date,
    parent_task_id: int,
) -> str:
    """
    Mark a task as recurring.

    `rule` may be a RecurrenceRule or a stored pattern blob. InvalidRule and
    ParentTaskNotFound are raised before anything is written.
    """
    resolved = _coerce_rule(rule, anchor_date)
    if state.task_store.get_task(int(parent_task_id)) is None:
        raise ParentTaskNotFound(int(parent_task_id))
    series_id = state.series_store.create(
        SeriesState(series_id="", rule=resolved, anchor_date=anchor_date, parent_task_id=int(parent_task_id))
    )
    logger.info("Series created id=%s parent=%s rule=%s", series_id, parent_task_id, resolved.describe())
    return series_id


def get_series(state: AppState, series_id: str) -> SeriesState:
    series, _ = state.series_store.get(series_id)
    return series


def list_series(state: AppState, *, active_only: bool = False) -> list[SeriesState]:
    """Readable series in creation order. Unreadable rows are skipped (and marked errored by the store)."""
    out: list[SeriesState] = []
    for sid in state.series_store.list_series_ids(active_only=active_only):
        try:
            out.append(get_series(state, sid))
        except CorruptSeriesRecord as e:
            logger.warning("Skipping series %s: %s", sid, e.reason)
    return out


def stop_series(state: AppState, series_id: str) -> bool:
    """
    Deactivate a series. Already-materialized instances are untouched.

    Returns False if the series was already inactive.
    """
    stopped = False

    def mutate(s: SeriesState) -> SeriesState | None:
        nonlocal stopped
        stopped = s.active
        return s.deactivated(SeriesStatus.STOPPED) if s.active else None

    update_series(state.series_store, series_id, mutate, attempts=_cas_attempts(state))
    if stopped:
        logger.info("Series stopped id=%s", series_id)
    return stopped


def update_rule(state: AppState, series_id: str, rule: RecurrenceRule | Mapping[str, Any]) -> SeriesState:
    """
    Replace the pattern of an active series.

    The anchor is kept; the new rule only affects occurrences after the
    current watermark, so nothing already generated moves.
    """

    def mutate(s: SeriesState) -> SeriesState:
        if not s.active:
            raise SeriesInactive(f"Series {series_id} is {s.status.value}")
        return replace(s, rule=_coerce_rule(rule, s.anchor_date))

    updated = update_series(state.series_store, series_id, mutate, attempts=_cas_attempts(state))
    logger.info("Series rule updated id=%s rule=%s", series_id, updated.rule.describe())
    return updated


def add_skip_date(state: AppState, series_id: str, day: date) -> bool:
    return state.exceptions.add_skip_date(series_id, day)


def remove_skip_date(state: AppState, series_id: str, day: date) -> bool:
    return state.exceptions.remove_skip_date(series_id, day)


def skip_next(state: AppState, series_id: str) -> date | None:
    return state.exceptions.skip_next(series_id)


def next_occurrence(state: AppState, series_id: str) -> date | None:
    """The occurrence the scheduler will materialize next, if any."""
    s = get_series(state, series_id)
    if not s.active:
        return None
    occurrence = compute_next(s.rule, s.anchor_date, s.watermark, s.skip_dates, max_steps=_max_steps(state))
    if occurrence is None or s.rule.end.is_reached(occurrence, s.scheduled_count):
        return None
    return occurrence


def preview_occurrences(rule: RecurrenceRule, anchor_date: date, count: int) -> OccurrencePreview:
    """Finite, restartable lazy sequence of occurrence dates. Materializes nothing."""
    return OccurrencePreview(rule, anchor_date, count)


def upcoming_occurrences(state: AppState, series_id: str, count: int) -> list[date]:
    """Next `count` dates the scheduler would materialize for a series (skips and end condition applied)."""
    s = get_series(state, series_id)
    if not s.active:
        return []

    out: list[date] = []
    scheduled = s.scheduled_count
    for occurrence in iter_occurrences(
        s.rule, s.anchor_date, after=s.watermark, skip_dates=s.skip_dates, max_steps=_max_steps(state)
    ):
        if len(out) >= count or s.rule.end.is_reached(occurrence, scheduled):
            break
        out.append(occurrence)
        scheduled += 1
    return out
