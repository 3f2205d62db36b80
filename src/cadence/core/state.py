# src/cadence/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..series.exception_manager import ExceptionManager
from ..series.scheduler import MaterializationScheduler
from ..series.series_store import SeriesStore
from ..tasks.task_store import TaskStore
from .ports import Clock


@dataclass
class AppState:
    # Settings object (Settings or a SimpleNamespace in tests).
    settings: Any

    clock: Clock
    task_store: TaskStore
    series_store: SeriesStore
    exceptions: ExceptionManager
    scheduler: MaterializationScheduler
