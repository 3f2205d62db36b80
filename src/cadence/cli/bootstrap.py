# src/cadence/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete stores, the clock, the ExceptionManager and the
  MaterializationScheduler into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import Clock, SystemClock
from ..core.state import AppState
from ..series.exception_manager import ExceptionManager
from ..series.scheduler import MaterializationScheduler
from ..series.series_store import SeriesStore
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.series_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, clock: Clock | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). Tests pass their own
    settings object and a fake clock.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    task_store = TaskStore(settings.tasks_db_path)
    series_store = SeriesStore(settings.series_db_path)

    exceptions = ExceptionManager(
        series_store,
        task_store,
        cas_attempts=settings.user_cas_max_attempts,
        max_steps=settings.max_calculation_steps,
    )
    scheduler = MaterializationScheduler(
        series_store,
        task_store,
        clock,
        workers=settings.scheduler_workers,
        cas_attempts=settings.cas_max_attempts,
        max_steps=settings.max_calculation_steps,
        max_catchup=settings.max_catchup_per_tick,
        claim_timeout_seconds=settings.claim_timeout_seconds,
    )

    logger.debug("State wired tasks_db=%s series_db=%s", settings.tasks_db_path, settings.series_db_path)
    return AppState(
        settings=settings,
        clock=clock,
        task_store=task_store,
        series_store=series_store,
        exceptions=exceptions,
        scheduler=scheduler,
    )
