# tests/conftest.py

from __future__ import annotations

from datetime import date
from pathlib import Path
from types import SimpleNamespace

import pytest

from cadence.cli.bootstrap import create_initial_state
from cadence.core.state import AppState

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="cadence-test",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        series_db_path=tmp_path / "series.sqlite3",
        # Scheduler
        scheduler_workers=4,
        cas_max_attempts=3,
        user_cas_max_attempts=10,
        max_catchup_per_tick=32,
        claim_timeout_seconds=300.0,
        # Calculator / display
        max_calculation_steps=10_000,
        preview_default_count=5,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(date(2025, 1, 6))


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    """
    AppState wired with a fake clock.

    NOTE: We keep real SQLite stores here (TaskStore/SeriesStore) because
    their correctness is part of what we want to test.
    """
    return create_initial_state(settings=settings, clock=clock)


@pytest.fixture()
def parent_task_id(state: AppState) -> int:
    return state.task_store.add_task(title="Water the plants", due_date=date(2025, 1, 6), tags=["home"])
