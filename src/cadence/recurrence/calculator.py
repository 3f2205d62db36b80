# src/cadence/recurrence/calculator.py

"""
Occurrence calculator.

Pure functions over (rule, anchor, from_date, skip_dates). Nothing here reads
a clock or touches storage, so every function is safe to call concurrently.

The occurrence sequence of a rule is every rule-matching date on or after the
anchor, in ascending order:
- daily:   anchor + k*interval days
- weekly:  listed weekdays inside weeks whose distance (in weeks) from the
           anchor's week is a multiple of interval; weeks start on Monday
- monthly: anchor month + k*interval, day clamped to the month length
           (-1 means the last day)
- yearly:  anchor year + k*interval on a fixed month/day; days that do not
           exist in the candidate year (Feb 29) clamp to the month's last day

Each generator starts at the step containing from_date instead of the anchor,
so the iteration cap only counts steps spent past from_date.
"""

from __future__ import annotations

from collections.abc import Collection, Iterator
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from ..core.errors import CalculationOverflow
from .rule import Frequency, RecurrenceRule, clamp_day

DEFAULT_MAX_STEPS = 10_000


def _week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def _months_between(a: date, b: date) -> int:
    return (b.year - a.year) * 12 + (b.month - a.month)


def _daily(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    k = max(0, (start - anchor).days // rule.interval)
    step = timedelta(days=rule.interval)
    current = anchor + k * step
    while True:
        yield current
        current = current + step


def _weekly(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    anchor_week = _week_start(anchor)
    weeks = max(0, (_week_start(start) - anchor_week).days // 7)
    window = (weeks // rule.interval) * rule.interval
    while True:
        week = anchor_week + timedelta(weeks=window)
        for day in rule.days_of_week:
            candidate = week + timedelta(days=day)
            if candidate >= anchor:
                yield candidate
        window += rule.interval


def _monthly(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    dom = rule.day_of_month if rule.day_of_month is not None else anchor.day
    first = anchor.replace(day=1)
    k = max(0, _months_between(anchor, start) // rule.interval)
    while True:
        month = first + relativedelta(months=k * rule.interval)
        candidate = clamp_day(month.year, month.month, dom)
        if candidate >= anchor:
            yield candidate
        k += 1


def _yearly(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    dom = rule.day_of_month if rule.day_of_month is not None else anchor.day
    moy = rule.month_of_year if rule.month_of_year is not None else anchor.month
    k = max(0, (start.year - anchor.year) // rule.interval)
    while True:
        year = anchor.year + k * rule.interval
        if year > date.max.year:
            raise OverflowError("year out of range")
        candidate = clamp_day(year, moy, dom)
        if candidate >= anchor:
            yield candidate
        k += 1


_GENERATORS = {
    Frequency.DAILY: _daily,
    Frequency.WEEKLY: _weekly,
    Frequency.MONTHLY: _monthly,
    Frequency.YEARLY: _yearly,
}


def _candidates(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    """Ascending rule matches from the step containing `start`; stops at the end of the calendar."""
    rule = rule.with_anchor_defaults(anchor)
    gen = _GENERATORS[rule.frequency](rule, anchor, max(start, anchor))
    while True:
        try:
            yield next(gen)
        except (OverflowError, ValueError):
            return


def compute_next(
    rule: RecurrenceRule,
    anchor: date,
    from_date: date,
    skip_dates: Collection[date] = (),
    *,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> date | None:
    """
    First occurrence strictly after from_date that is not in skip_dates.

    Returns None only when the calendar range is exhausted. The end condition
    of the rule is not applied here.
    Raises CalculationOverflow after max_steps candidates.
    """
    steps = 0
    for candidate in _candidates(rule, anchor, from_date):
        steps += 1
        if steps > max_steps:
            raise CalculationOverflow(max_steps)
        if candidate <= from_date or candidate in skip_dates:
            continue
        return candidate
    return None


def iter_occurrences(
    rule: RecurrenceRule,
    anchor: date,
    *,
    after: date | None = None,
    skip_dates: Collection[date] = (),
    max_steps: int = DEFAULT_MAX_STEPS,
) -> Iterator[date]:
    """
    Lazily walk the occurrence sequence by chaining compute_next.

    Without `after` the walk includes the anchor itself when it matches the rule.
    """
    cursor = after if after is not None else anchor - timedelta(days=1)
    while True:
        nxt = compute_next(rule, anchor, cursor, skip_dates, max_steps=max_steps)
        if nxt is None:
            return
        yield nxt
        cursor = nxt


class OccurrencePreview:
    """
    Finite, restartable view over the first `count` occurrences of a rule.

    Every iteration recomputes from scratch, nothing is cached or materialized.
    The anchor occurrence belongs to the parent task: it is shown but does not
    consume the AfterOccurrences budget.
    """

    def __init__(
        self,
        rule: RecurrenceRule,
        anchor: date,
        count: int,
        *,
        skip_dates: Collection[date] = (),
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self.rule = rule.with_anchor_defaults(anchor)
        self.anchor = anchor
        self.count = max(0, int(count))
        self.skip_dates = frozenset(skip_dates)
        self.max_steps = max_steps

    def __iter__(self) -> Iterator[date]:
        produced = 0
        generated = 0
        end = self.rule.end
        for occurrence in iter_occurrences(
            self.rule, self.anchor, skip_dates=self.skip_dates, max_steps=self.max_steps
        ):
            if produced >= self.count or end.is_reached(occurrence, generated):
                return
            if occurrence != self.anchor:
                generated += 1
            produced += 1
            yield occurrence

    def __repr__(self) -> str:
        return f"OccurrencePreview(rule={self.rule.describe()!r}, anchor={self.anchor}, count={self.count})"


def preview_occurrences(
    rule: RecurrenceRule,
    anchor: date,
    count: int,
    *,
    skip_dates: Collection[date] = (),
    max_steps: int = DEFAULT_MAX_STEPS,
) -> OccurrencePreview:
    return OccurrencePreview(rule, anchor, count, skip_dates=skip_dates, max_steps=max_steps)
