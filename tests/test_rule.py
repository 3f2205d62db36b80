# tests/test_rule.py

from __future__ import annotations

from datetime import date

import pytest

from cadence.core.errors import InvalidRule
from cadence.recurrence.rule import (
    NEVER,
    AfterOccurrences,
    Frequency,
    OnDate,
    RecurrenceRule,
    clamp_day,
)


def test_build_fills_defaults_from_anchor() -> None:
    anchor = date(2025, 1, 8)  # Wednesday

    weekly = RecurrenceRule.build("weekly", anchor=anchor)
    monthly = RecurrenceRule.build(Frequency.MONTHLY, anchor=anchor)
    yearly = RecurrenceRule.build("YEARLY", anchor=anchor)

    assert weekly.days_of_week == (2,)
    assert monthly.day_of_month == 8
    assert (yearly.month_of_year, yearly.day_of_month) == (1, 8)
    assert RecurrenceRule.build("daily", anchor=anchor).end is NEVER


def test_days_of_week_are_sorted_and_deduplicated() -> None:
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=(4, 0, 2, 0))
    assert rule.days_of_week == (0, 2, 4)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"frequency": "hourly"},
        {"frequency": "daily", "interval": 0},
        {"frequency": "daily", "interval": True},
        {"frequency": "weekly", "days_of_week": (7,)},
        {"frequency": "daily", "days_of_week": (1,)},
        {"frequency": "weekly", "day_of_month": 3},
        {"frequency": "monthly", "day_of_month": 0},
        {"frequency": "monthly", "day_of_month": 32},
        {"frequency": "monthly", "month_of_year": 2},
        {"frequency": "yearly", "month_of_year": 13},
    ],
)
def test_invalid_rules_are_rejected(kwargs) -> None:
    with pytest.raises(InvalidRule):
        RecurrenceRule(**kwargs)


def test_end_conditions_validate() -> None:
    with pytest.raises(InvalidRule):
        AfterOccurrences(0)
    with pytest.raises(InvalidRule):
        OnDate("2025-01-01")  # type: ignore[arg-type]


def test_end_condition_semantics() -> None:
    until = OnDate(date(2025, 3, 1))
    assert not until.is_reached(date(2025, 3, 1), 99)
    assert until.is_reached(date(2025, 3, 2), 0)

    count = AfterOccurrences(2)
    assert not count.is_reached(date(2030, 1, 1), 1)
    assert count.is_reached(date(2025, 1, 1), 2)


def test_invalid_rule_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        RecurrenceRule.from_dict({"frequency": "weekly", "daysOfWeek": [9]})


def test_dict_codec_round_trip_keeps_end_condition() -> None:
    rule = RecurrenceRule(
        Frequency.WEEKLY,
        interval=2,
        days_of_week=(0, 2),
        end=OnDate(date(2025, 6, 30)),
    )
    data = rule.to_dict()

    assert data == {
        "frequency": "weekly",
        "interval": 2,
        "daysOfWeek": [0, 2],
        "dayOfMonth": None,
        "monthOfYear": None,
        "count": None,
        "until": "2025-06-30",
    }
    assert RecurrenceRule.from_dict(data) == rule


def test_from_dict_treats_empty_fields_as_absent_and_uses_anchor() -> None:
    rule = RecurrenceRule.from_dict(
        {"frequency": "weekly", "interval": None, "daysOfWeek": [], "dayOfMonth": None, "count": 3},
        anchor=date(2025, 1, 10),  # Friday
    )
    assert rule.interval == 1
    assert rule.days_of_week == (4,)
    assert rule.end == AfterOccurrences(3)


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"frequency": "daily", "count": 2, "until": "2025-01-01"},
        {"frequency": "daily", "until": "not-a-date"},
        ["daily"],
    ],
)
def test_from_dict_rejects_malformed_blobs(data) -> None:
    with pytest.raises(InvalidRule):
        RecurrenceRule.from_dict(data)


def test_clamp_day() -> None:
    assert clamp_day(2025, 2, 31) == date(2025, 2, 28)
    assert clamp_day(2024, 2, 31) == date(2024, 2, 29)
    assert clamp_day(2025, 4, -1) == date(2025, 4, 30)
    assert clamp_day(2025, 1, 15) == date(2025, 1, 15)


def test_describe() -> None:
    assert RecurrenceRule(Frequency.DAILY).describe() == "Every day"
    assert (
        RecurrenceRule(Frequency.WEEKLY, interval=2, days_of_week=(0, 2)).describe()
        == "Every 2 weeks on Mon, Wed"
    )
    assert (
        RecurrenceRule(Frequency.MONTHLY, day_of_month=-1, end=AfterOccurrences(3)).describe()
        == "Every month on the last day for 3 occurrences"
    )
    assert (
        RecurrenceRule(Frequency.YEARLY, day_of_month=29, month_of_year=2).describe() == "Every year on Feb 29"
    )
