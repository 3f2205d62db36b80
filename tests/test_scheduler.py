# tests/test_scheduler.py

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import date

import pytest

from cadence.recurrence.rule import AfterOccurrences, Frequency, OnDate, RecurrenceRule
from cadence.series import series_api
from cadence.series.scheduler import (
    MaterializationScheduler,
    StepOutcome,
    run_materialization_loop,
)
from cadence.series.series_models import SeriesState, SeriesStatus, dedupe_key

from .fakes import FakeClock, FakeSeriesRepo, FakeTaskRepo


def _make(
    rule: RecurrenceRule,
    anchor: date,
    today: date,
    **kwargs,
) -> tuple[MaterializationScheduler, FakeSeriesRepo, FakeTaskRepo, FakeClock, str]:
    series = FakeSeriesRepo()
    tasks = FakeTaskRepo()
    clock = FakeClock(today)
    sid = series.create(SeriesState(series_id="", rule=rule, anchor_date=anchor, parent_task_id=1))
    scheduler = MaterializationScheduler(series, tasks, clock, **kwargs)
    return scheduler, series, tasks, clock, sid


def test_tick_materializes_due_occurrence_once() -> None:
    sched, series, tasks, clock, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 2))

    report = sched.tick()
    again = sched.tick()

    assert [(m.series_id, m.occurrence) for m in report.materialized] == [(sid, date(2025, 1, 2))]
    assert again.materialized == []
    assert tasks.due_dates() == [date(2025, 1, 2)]

    s, _ = series.get(sid)
    assert s.last_generated_occurrence == date(2025, 1, 2)
    assert s.generated_count == 1
    assert s.pending_occurrence is None


def test_anchor_itself_is_not_materialized() -> None:
    sched, _, tasks, _, _ = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 1))

    report = sched.tick()

    assert report.materialized == []
    assert tasks.create_calls == 0


def test_future_occurrence_is_not_due() -> None:
    sched, _, tasks, _, sid = _make(
        RecurrenceRule(Frequency.WEEKLY, days_of_week=(0,)), date(2025, 1, 6), date(2025, 1, 10)
    )

    results = sched.process_series(sid)

    assert [r.outcome for r in results] == [StepOutcome.NOT_DUE]
    assert tasks.create_calls == 0


def test_after_occurrences_creates_exactly_n_then_exhausts() -> None:
    rule = RecurrenceRule(Frequency.DAILY, end=AfterOccurrences(3))
    sched, series, tasks, clock, sid = _make(rule, date(2025, 1, 1), date(2025, 1, 2), max_catchup=1)

    for _ in range(3):
        report = sched.tick()
        assert len(report.materialized) == 1
        clock.advance()

    fourth = sched.tick()

    assert fourth.materialized == []
    assert fourth.exhausted == [sid]
    assert tasks.due_dates() == [date(2025, 1, 2), date(2025, 1, 3), date(2025, 1, 4)]
    s, _ = series.get(sid)
    assert s.status is SeriesStatus.EXHAUSTED
    assert s.generated_count == 3


def test_on_date_end_includes_until_and_then_exhausts() -> None:
    rule = RecurrenceRule(Frequency.DAILY, end=OnDate(date(2025, 1, 3)))
    sched, series, tasks, _, sid = _make(rule, date(2025, 1, 1), date(2025, 1, 10))

    report = sched.tick()

    assert [m.occurrence for m in report.materialized] == [date(2025, 1, 2), date(2025, 1, 3)]
    assert report.exhausted == [sid]
    assert series.get(sid)[0].status is SeriesStatus.EXHAUSTED


def test_catch_up_is_oldest_first_and_bounded() -> None:
    sched, series, tasks, _, sid = _make(
        RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 10), max_catchup=4
    )

    first = sched.tick()
    second = sched.tick()

    assert [m.occurrence.day for m in first.materialized] == [2, 3, 4, 5]
    assert [m.occurrence.day for m in second.materialized] == [6, 7, 8, 9]
    assert series.get(sid)[0].last_generated_occurrence == date(2025, 1, 9)


def test_skip_dates_are_not_materialized() -> None:
    sched, series, tasks, _, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 4))
    s, v = series.get(sid)
    series.compare_and_swap(sid, v, s.with_skip(date(2025, 1, 3)))

    sched.tick()

    assert tasks.due_dates() == [date(2025, 1, 2), date(2025, 1, 4)]


def test_task_store_outage_leaves_watermark_and_retries_next_tick() -> None:
    sched, series, tasks, _, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 2))
    tasks.fail_next = 1

    failed = sched.tick()

    assert failed.failed == [sid]
    s, _ = series.get(sid)
    assert s.status is SeriesStatus.ACTIVE
    assert s.last_generated_occurrence is None
    assert s.pending_occurrence is None

    recovered = sched.tick()

    assert [m.occurrence for m in recovered.materialized] == [date(2025, 1, 2)]
    assert tasks.due_dates() == [date(2025, 1, 2)]


def test_stopped_series_is_a_no_op() -> None:
    sched, series, tasks, _, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 5))
    s, v = series.get(sid)
    series.compare_and_swap(sid, v, s.deactivated(SeriesStatus.STOPPED))
    cas_before = series.cas_calls

    report = sched.tick()

    assert report.materialized == []
    assert sched.process_series(sid)[0].outcome is StepOutcome.INACTIVE
    assert series.cas_calls == cas_before
    assert tasks.create_calls == 0


def test_calculation_overflow_marks_series_errored() -> None:
    sched, series, tasks, _, sid = _make(
        RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 2, 1), max_steps=3
    )
    s, v = series.get(sid)
    for d in range(2, 10):
        s = s.with_skip(date(2025, 1, d))
    series.compare_and_swap(sid, v, s)

    report = sched.tick()

    assert report.errored == [sid]
    errored, _ = series.get(sid)
    assert errored.status is SeriesStatus.ERRORED
    assert "3 steps" in (errored.last_error or "")
    assert tasks.create_calls == 0


def test_cas_conflicts_defer_to_next_tick() -> None:
    sched, series, tasks, _, sid = _make(
        RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 2), cas_attempts=2
    )
    series.cas_failures_left = 2

    deferred = sched.tick()

    assert deferred.deferred == [sid]
    assert tasks.create_calls == 0

    later = sched.tick()

    assert [m.occurrence for m in later.materialized] == [date(2025, 1, 2)]
    assert tasks.create_calls == 1


def test_concurrent_ticks_create_exactly_one_task() -> None:
    workers = 8
    _, series, tasks, clock, sid = _make(
        RecurrenceRule(Frequency.WEEKLY, days_of_week=(0,)), date(2025, 1, 6), date(2025, 1, 13), max_catchup=1
    )
    schedulers = [MaterializationScheduler(series, tasks, clock, max_catchup=1) for _ in range(workers)]
    series.hold_first_reads(workers)
    outcomes: list[StepOutcome] = []
    lock = threading.Lock()

    def run(s: MaterializationScheduler) -> None:
        res = s.process_series(sid)
        with lock:
            outcomes.extend(r.outcome for r in res)

    threads = [threading.Thread(target=run, args=(s,)) for s in schedulers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert tasks.due_dates() == [date(2025, 1, 13)]
    assert outcomes.count(StepOutcome.MATERIALIZED) == 1
    assert series.get(sid)[0].generated_count == 1


def test_concurrent_ticks_on_sqlite_create_each_occurrence_once(state, parent_task_id) -> None:
    sid = series_api.create_series(state, {"frequency": "daily"}, date(2025, 1, 1), parent_task_id)
    state.clock.today = date(2025, 1, 5)
    barrier = threading.Barrier(4)

    def run() -> None:
        barrier.wait()
        state.scheduler.tick()

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    instances = state.task_store.list_series_instances(sid)
    assert [t.due_date for t in instances] == [date(2025, 1, 2), date(2025, 1, 3), date(2025, 1, 4), date(2025, 1, 5)]
    assert all(t.title == "Water the plants" for t in instances)
    assert series_api.get_series(state, sid).generated_count == 4


def test_stale_claim_is_recovered_through_dedupe_key() -> None:
    now = [1000.0]
    sched, series, tasks, _, sid = _make(
        RecurrenceRule(Frequency.DAILY),
        date(2025, 1, 1),
        date(2025, 1, 2),
        claim_timeout_seconds=60,
        time_fn=lambda: now[0],
    )
    # A worker claimed 01-02, created the task, then died before finalizing.
    s, _ = series.get(sid)
    series.put(s.claimed(date(2025, 1, 2), 990.0))
    tasks.create_task_from_template(1, date(2025, 1, 2), dedupe_key(sid, date(2025, 1, 2)))

    fresh = sched.process_series(sid)
    assert [r.outcome for r in fresh] == [StepOutcome.IN_FLIGHT]

    now[0] = 2000.0
    recovered = sched.process_series(sid)

    assert recovered[0].outcome is StepOutcome.MATERIALIZED
    assert recovered[0].materialized is not None and recovered[0].materialized.task_id == 1
    assert tasks.due_dates() == [date(2025, 1, 2)]
    s, _ = series.get(sid)
    assert s.pending_occurrence is None
    assert s.last_generated_occurrence == date(2025, 1, 2)


@pytest.mark.asyncio
async def test_materialization_loop_ticks_until_cancelled() -> None:
    sched, series, tasks, clock, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 3))

    loop_task = asyncio.create_task(run_materialization_loop(sched, interval_seconds=0.01))
    await asyncio.sleep(0.1)
    loop_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await loop_task

    assert tasks.due_dates() == [date(2025, 1, 2), date(2025, 1, 3)]


def test_missing_parent_marks_series_errored_once() -> None:
    sched, series, tasks, clock, sid = _make(RecurrenceRule(Frequency.DAILY), date(2025, 1, 1), date(2025, 1, 2))
    tasks.missing_parents.add(1)

    report = sched.tick()

    assert report.errored == [sid]
    assert report.failed == []
    s, _ = series.get(sid)
    assert s.status is SeriesStatus.ERRORED
    assert s.pending_occurrence is None
    assert "Parent task 1 not found" in (s.last_error or "")

    clock.advance()
    again = sched.tick()

    assert again.errored == [] and again.failed == []
    assert tasks.create_calls == 1


def test_parent_deleted_on_sqlite_errors_series(state, parent_task_id, settings) -> None:
    sid = series_api.create_series(state, {"frequency": "daily"}, date(2025, 1, 1), parent_task_id)
    conn = sqlite3.connect(settings.tasks_db_path)
    conn.execute("DELETE FROM tasks WHERE id = ?", (parent_task_id,))
    conn.commit()
    conn.close()
    state.clock.today = date(2025, 1, 3)

    report = state.scheduler.tick()

    assert report.errored == [sid]
    assert series_api.get_series(state, sid).status is SeriesStatus.ERRORED
    assert state.task_store.list_series_instances(sid) == []
    assert state.scheduler.tick().errored == []


def test_unreadable_series_row_is_reported_errored(state, parent_task_id, settings) -> None:
    sid = series_api.create_series(state, {"frequency": "daily"}, date(2025, 1, 1), parent_task_id)
    conn = sqlite3.connect(settings.series_db_path)
    conn.execute("UPDATE series SET rule = ? WHERE series_id = ?", ("not json", sid))
    conn.commit()
    conn.close()
    state.clock.today = date(2025, 1, 3)

    report = state.scheduler.tick()

    assert report.errored == [sid]
    assert report.failed == []
    assert state.scheduler.tick().errored == []
    assert state.task_store.list_series_instances(sid) == []
