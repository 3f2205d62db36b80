# src/cadence/series/scheduler.py

"""
Materialization scheduler.

tick() evaluates every active series once. Per series:
- read state; an inactive series is a cheap no-op
- compute the next occurrence after the watermark
- none left / end condition reached -> Exhausted (CAS)
- not due yet -> nothing to do
- due -> claim it with CAS (pending_occurrence), create the task with the
  dedupe key, then advance the watermark with a second CAS

Only the worker whose claim CAS wins creates the task. Losers re-read, see
the in-flight claim or the advanced watermark, and skip. A task store outage
releases the claim, leaving the watermark where it was for the next tick.
Any other creation failure (parent task gone, unexpected error) parks the
series as ERRORED instead of retrying it forever.
A claim left behind by a crashed worker goes stale after claim_timeout_seconds
and is re-driven through the same dedupe key.

The scheduler owns no timers: ticks come from outside (run_materialization_loop
or a cron-style caller).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from ..core.errors import (
    CalculationOverflow,
    ConcurrentUpdateConflict,
    CorruptSeriesRecord,
    DuplicateKeyError,
    ParentTaskNotFound,
    TaskStoreUnavailable,
)
from ..core.ports import Clock, SeriesStateRepository, TaskRepo
from ..recurrence.calculator import DEFAULT_MAX_STEPS, compute_next
from .cas import DEFAULT_CAS_ATTEMPTS, update_series
from .series_models import SeriesState, SeriesStatus, dedupe_key

logger = logging.getLogger(__name__)


class StepOutcome(StrEnum):
    MATERIALIZED = "materialized"
    NOT_DUE = "not_due"
    IN_FLIGHT = "in_flight"  # another worker holds a fresh claim
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"
    ERRORED = "errored"
    DEFERRED = "deferred"  # CAS kept losing; retried next tick
    FAILED = "failed"  # task store error; retried next tick


@dataclass(slots=True, frozen=True)
class Materialization:
    series_id: str
    occurrence: date
    task_id: int


@dataclass(slots=True, frozen=True)
class StepResult:
    outcome: StepOutcome
    materialized: Materialization | None = None
    error: str | None = None


@dataclass(slots=True)
class TickReport:
    today: date
    materialized: list[Materialization] = field(default_factory=list)
    exhausted: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"materialized={len(self.materialized)} exhausted={len(self.exhausted)} "
            f"errored={len(self.errored)} deferred={len(self.deferred)} failed={len(self.failed)}"
        )


class MaterializationScheduler:
    def __init__(
        self,
        series_repo: SeriesStateRepository,
        task_repo: TaskRepo,
        clock: Clock,
        *,
        workers: int = 4,
        cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_catchup: int = 32,
        claim_timeout_seconds: float = 300.0,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._series = series_repo
        self._tasks = task_repo
        self._clock = clock
        self._workers = max(1, int(workers))
        self._cas_attempts = max(1, int(cas_attempts))
        self._max_steps = max_steps
        self._max_catchup = max(1, int(max_catchup))
        self._claim_timeout = float(claim_timeout_seconds)
        self._time = time_fn

    # ---- tick ----

    def tick(self) -> TickReport:
        """Evaluate all active series once. Per-series failures never escape."""
        today = self._clock.now()
        report = TickReport(today=today)

        series_ids = self._series.list_series_ids(active_only=True)
        if not series_ids:
            return report

        with ThreadPoolExecutor(max_workers=min(self._workers, len(series_ids))) as pool:
            futures = {pool.submit(self.process_series, sid, today): sid for sid in series_ids}
            for fut in as_completed(futures):
                sid = futures[fut]
                try:
                    results = fut.result()
                except Exception:
                    logger.exception("process_series crashed series=%s", sid)
                    report.failed.append(sid)
                    continue
                self._merge(report, sid, results)

        report.materialized.sort(key=lambda m: (m.occurrence, m.series_id))
        logger.info("Tick %s: %s", today.isoformat(), report.summary())
        return report

    @staticmethod
    def _merge(report: TickReport, series_id: str, results: list[StepResult]) -> None:
        for res in results:
            if res.materialized is not None:
                report.materialized.append(res.materialized)
        last = results[-1].outcome if results else StepOutcome.NOT_DUE
        if last is StepOutcome.EXHAUSTED:
            report.exhausted.append(series_id)
        elif last is StepOutcome.ERRORED:
            report.errored.append(series_id)
        elif last is StepOutcome.DEFERRED:
            report.deferred.append(series_id)
        elif last is StepOutcome.FAILED:
            report.failed.append(series_id)

    def process_series(self, series_id: str, today: date | None = None) -> list[StepResult]:
        """
        Materialize every due occurrence of one series, oldest first.

        Stops at the first non-materializing step or after max_catchup occurrences.
        """
        if today is None:
            today = self._clock.now()

        results: list[StepResult] = []
        for _ in range(self._max_catchup):
            try:
                res = self._step(series_id, today)
            except CorruptSeriesRecord as e:
                # The store already marked the row errored.
                logger.error("Series errored series=%s: %s", series_id, e.reason)
                res = StepResult(StepOutcome.ERRORED, error=str(e))
            except Exception as e:
                logger.exception("Series step failed series=%s", series_id)
                res = StepResult(StepOutcome.FAILED, error=str(e))
            results.append(res)
            if res.outcome is not StepOutcome.MATERIALIZED:
                break
        return results

    # ---- per-occurrence state machine ----

    def _claim_is_stale(self, state: SeriesState) -> bool:
        if state.pending_claimed_at is None:
            return True
        return self._time() - state.pending_claimed_at >= self._claim_timeout

    def _step(self, series_id: str, today: date) -> StepResult:
        for _ in range(self._cas_attempts):
            state, version = self._series.get(series_id)

            # Stop is checked first so stopped series cost one read.
            if not state.active:
                return StepResult(StepOutcome.INACTIVE)

            if state.pending_occurrence is not None:
                if not self._claim_is_stale(state):
                    return StepResult(StepOutcome.IN_FLIGHT)
                occurrence = state.pending_occurrence
                if not self._series.compare_and_swap(series_id, version, state.claimed(occurrence, self._time())):
                    continue
                logger.warning("Recovering stale claim series=%s occurrence=%s", series_id, occurrence)
                return self._materialize(state, occurrence)

            try:
                occurrence = compute_next(
                    state.rule, state.anchor_date, state.watermark, state.skip_dates, max_steps=self._max_steps
                )
            except CalculationOverflow as e:
                if not self._series.compare_and_swap(
                    series_id, version, state.deactivated(SeriesStatus.ERRORED, str(e))
                ):
                    continue
                logger.error("Series errored series=%s: %s", series_id, e)
                return StepResult(StepOutcome.ERRORED, error=str(e))

            if occurrence is None or state.rule.end.is_reached(occurrence, state.generated_count):
                if not self._series.compare_and_swap(series_id, version, state.deactivated(SeriesStatus.EXHAUSTED)):
                    continue
                logger.info("Series exhausted series=%s generated=%s", series_id, state.generated_count)
                return StepResult(StepOutcome.EXHAUSTED)

            if occurrence > today:
                return StepResult(StepOutcome.NOT_DUE)

            if not self._series.compare_and_swap(series_id, version, state.claimed(occurrence, self._time())):
                continue
            return self._materialize(state, occurrence)

        logger.info("Series deferred to next tick after %s CAS conflicts series=%s", self._cas_attempts, series_id)
        return StepResult(StepOutcome.DEFERRED)

    def _materialize(self, state: SeriesState, occurrence: date) -> StepResult:
        series_id = state.series_id
        key = dedupe_key(series_id, occurrence)

        try:
            task_id = self._tasks.create_task_from_template(state.parent_task_id, occurrence, key)
        except DuplicateKeyError as e:
            logger.info("Task already exists series=%s occurrence=%s task=%s", series_id, occurrence, e.task_id)
            task_id = e.task_id if e.task_id is not None else self._tasks.get_task_by_dedupe_key(series_id, occurrence)
        except TaskStoreUnavailable as e:
            logger.warning("Task store unavailable series=%s occurrence=%s: %s", series_id, occurrence, e)
            self._release(series_id, occurrence)
            return StepResult(StepOutcome.FAILED, error=str(e))
        except ParentTaskNotFound as e:
            logger.error("Series errored series=%s occurrence=%s: %s", series_id, occurrence, e)
            return self._fail_permanently(series_id, occurrence, str(e))
        except Exception as e:
            logger.exception("Task creation failed series=%s occurrence=%s", series_id, occurrence)
            return self._fail_permanently(series_id, occurrence, f"{type(e).__name__}: {e}")

        def finalize(s: SeriesState) -> SeriesState | None:
            if s.pending_occurrence != occurrence:
                return None
            return s.finalized(occurrence)

        try:
            update_series(self._series, series_id, finalize, attempts=self._cas_attempts)
        except ConcurrentUpdateConflict:
            # Task exists; the stale claim is finalized by a later tick via the dedupe key.
            logger.warning("Could not finalize series=%s occurrence=%s", series_id, occurrence)

        logger.info("Materialized series=%s occurrence=%s task=%s", series_id, occurrence, task_id)
        return StepResult(
            StepOutcome.MATERIALIZED,
            materialized=Materialization(series_id=series_id, occurrence=occurrence, task_id=int(task_id or 0)),
        )

    def _fail_permanently(self, series_id: str, occurrence: date, reason: str) -> StepResult:
        """Drop the claim and park the series as ERRORED; later ticks skip it."""

        def park(s: SeriesState) -> SeriesState | None:
            if s.pending_occurrence != occurrence:
                return None
            return s.released().deactivated(SeriesStatus.ERRORED, reason)

        try:
            committed = update_series(self._series, series_id, park, attempts=self._cas_attempts)
        except ConcurrentUpdateConflict:
            # Claim stays; it goes stale and the next attempt lands here again.
            logger.warning("Could not mark series errored series=%s occurrence=%s", series_id, occurrence)
            return StepResult(StepOutcome.DEFERRED, error=reason)
        if committed.status is not SeriesStatus.ERRORED:
            # Another worker re-claimed the occurrence meanwhile.
            return StepResult(StepOutcome.IN_FLIGHT, error=reason)
        return StepResult(StepOutcome.ERRORED, error=reason)

    def _release(self, series_id: str, occurrence: date) -> None:
        def release(s: SeriesState) -> SeriesState | None:
            return s.released() if s.pending_occurrence == occurrence else None

        try:
            update_series(self._series, series_id, release, attempts=self._cas_attempts)
        except ConcurrentUpdateConflict:
            logger.warning("Could not release claim series=%s occurrence=%s", series_id, occurrence)


async def run_materialization_loop(
    scheduler: MaterializationScheduler,
    *,
    interval_seconds: float = 60.0,
) -> None:
    """
    Simple polling driver.

    Every interval_seconds run scheduler.tick() in a worker thread so the
    event loop stays responsive. To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            await asyncio.to_thread(scheduler.tick)
        except Exception:
            logger.exception("Scheduler tick failed")

        await asyncio.sleep(sleep_s)
