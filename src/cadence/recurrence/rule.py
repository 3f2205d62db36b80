# src/cadence/recurrence/rule.py

"""
Recurrence rule value object.

A rule is a tagged variant over Frequency: each frequency owns a fixed set of
fields and construction rejects fields that belong to another frequency.
Missing per-frequency fields are filled from the anchor date by
with_anchor_defaults() (build() does it in one step).

The JSON shape produced by to_dict() is the persisted pattern blob:
    {"frequency": "weekly", "interval": 2, "daysOfWeek": [0, 2],
     "dayOfMonth": null, "monthOfYear": null, "count": null, "until": null}
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date
from enum import StrEnum
from typing import Any

from ..core.errors import InvalidRule

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
LAST_DAY_OF_MONTH = -1


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, raw: Any) -> Frequency:
        if isinstance(raw, Frequency):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise InvalidRule(f"Unknown frequency: {raw!r}") from None


# ---- end conditions ----


@dataclass(frozen=True, slots=True)
class Never:
    def is_reached(self, occurrence: date, generated_count: int) -> bool:
        return False

    def describe(self) -> str:
        return ""


@dataclass(frozen=True, slots=True)
class OnDate:
    """Series ends after `until`; an occurrence on `until` itself is still valid."""

    until: date

    def __post_init__(self) -> None:
        if not isinstance(self.until, date):
            raise InvalidRule(f"OnDate.until must be a date, got {self.until!r}")

    def is_reached(self, occurrence: date, generated_count: int) -> bool:
        return occurrence > self.until

    def describe(self) -> str:
        return f"until {self.until.isoformat()}"


@dataclass(frozen=True, slots=True)
class AfterOccurrences:
    count: int

    def __post_init__(self) -> None:
        if isinstance(self.count, bool) or not isinstance(self.count, int) or self.count < 1:
            raise InvalidRule(f"AfterOccurrences.count must be a positive integer, got {self.count!r}")

    def is_reached(self, occurrence: date, generated_count: int) -> bool:
        return generated_count >= self.count

    def describe(self) -> str:
        return f"for {self.count} occurrence{'s' if self.count != 1 else ''}"


EndCondition = Never | OnDate | AfterOccurrences

NEVER = Never()


# ---- helpers ----


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day_of_month: int) -> date:
    """Resolve day_of_month inside (year, month): -1 is the last day, overflow clamps."""
    last = days_in_month(year, month)
    if day_of_month == LAST_DAY_OF_MONTH:
        return date(year, month, last)
    return date(year, month, min(day_of_month, last))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_date(raw: Any, field_name: str) -> date:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        raise InvalidRule(f"{field_name} must be an ISO date, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    days_of_week: tuple[int, ...] = ()
    day_of_month: int | None = None
    month_of_year: int | None = None
    end: EndCondition = NEVER

    def __post_init__(self) -> None:
        freq = Frequency.parse(self.frequency)
        object.__setattr__(self, "frequency", freq)

        if not _is_int(self.interval) or self.interval < 1:
            raise InvalidRule(f"interval must be an integer >= 1, got {self.interval!r}")

        days = tuple(self.days_of_week or ())
        if days and freq is not Frequency.WEEKLY:
            raise InvalidRule(f"daysOfWeek is only valid for weekly rules, not {freq.value}")
        for d in days:
            if not _is_int(d) or not 0 <= d <= 6:
                raise InvalidRule(f"daysOfWeek values must be in [0, 6], got {d!r}")
        object.__setattr__(self, "days_of_week", tuple(sorted(set(days))))

        if self.day_of_month is not None:
            if freq not in (Frequency.MONTHLY, Frequency.YEARLY):
                raise InvalidRule(f"dayOfMonth is only valid for monthly/yearly rules, not {freq.value}")
            dom = self.day_of_month
            if not _is_int(dom) or not (dom == LAST_DAY_OF_MONTH or 1 <= dom <= 31):
                raise InvalidRule(f"dayOfMonth must be -1 or in [1, 31], got {dom!r}")

        if self.month_of_year is not None:
            if freq is not Frequency.YEARLY:
                raise InvalidRule(f"monthOfYear is only valid for yearly rules, not {freq.value}")
            if not _is_int(self.month_of_year) or not 1 <= self.month_of_year <= 12:
                raise InvalidRule(f"monthOfYear must be in [1, 12], got {self.month_of_year!r}")

        if not isinstance(self.end, (Never, OnDate, AfterOccurrences)):
            raise InvalidRule(f"Unsupported end condition: {self.end!r}")

    # ---- construction ----

    @classmethod
    def build(
        cls,
        frequency: Frequency | str,
        *,
        anchor: date,
        interval: int = 1,
        days_of_week: Iterable[int] | None = None,
        day_of_month: int | None = None,
        month_of_year: int | None = None,
        end: EndCondition | None = None,
    ) -> RecurrenceRule:
        """Validate and fill frequency-specific defaults from the anchor."""
        rule = cls(
            frequency=Frequency.parse(frequency),
            interval=interval,
            days_of_week=tuple(days_of_week or ()),
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            end=end if end is not None else NEVER,
        )
        return rule.with_anchor_defaults(anchor)

    def with_anchor_defaults(self, anchor: date) -> RecurrenceRule:
        if self.frequency is Frequency.WEEKLY and not self.days_of_week:
            return replace(self, days_of_week=(anchor.weekday(),))
        if self.frequency is Frequency.MONTHLY and self.day_of_month is None:
            return replace(self, day_of_month=anchor.day)
        if self.frequency is Frequency.YEARLY and (self.day_of_month is None or self.month_of_year is None):
            return replace(
                self,
                day_of_month=self.day_of_month if self.day_of_month is not None else anchor.day,
                month_of_year=self.month_of_year if self.month_of_year is not None else anchor.month,
            )
        return self

    # ---- JSON pattern codec ----

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "daysOfWeek": list(self.days_of_week),
            "dayOfMonth": self.day_of_month,
            "monthOfYear": self.month_of_year,
            "count": self.end.count if isinstance(self.end, AfterOccurrences) else None,
            "until": self.end.until.isoformat() if isinstance(self.end, OnDate) else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, anchor: date | None = None) -> RecurrenceRule:
        """
        Parse a stored pattern blob.

        Empty/null per-frequency fields count as absent, so blobs written by
        clients that always send every key still validate.
        """
        if not isinstance(data, Mapping):
            raise InvalidRule(f"Recurrence pattern must be an object, got {type(data).__name__}")
        if "frequency" not in data:
            raise InvalidRule("Recurrence pattern is missing 'frequency'")

        count = data.get("count")
        until = data.get("until")
        if count is not None and until is not None:
            raise InvalidRule("Recurrence pattern cannot set both 'count' and 'until'")

        end: EndCondition = NEVER
        if count is not None:
            end = AfterOccurrences(count)
        elif until is not None:
            end = OnDate(_parse_date(until, "until"))

        interval = data.get("interval")
        rule = cls(
            frequency=Frequency.parse(data["frequency"]),
            interval=1 if interval is None else interval,
            days_of_week=tuple(data.get("daysOfWeek") or ()),
            day_of_month=data.get("dayOfMonth"),
            month_of_year=data.get("monthOfYear"),
            end=end,
        )
        return rule.with_anchor_defaults(anchor) if anchor is not None else rule

    # ---- display ----

    def describe(self) -> str:
        unit = {
            Frequency.DAILY: "day",
            Frequency.WEEKLY: "week",
            Frequency.MONTHLY: "month",
            Frequency.YEARLY: "year",
        }[self.frequency]
        text = f"Every {unit}" if self.interval == 1 else f"Every {self.interval} {unit}s"

        if self.frequency is Frequency.WEEKLY and self.days_of_week:
            text += " on " + ", ".join(WEEKDAY_NAMES[d] for d in self.days_of_week)
        elif self.frequency is Frequency.MONTHLY and self.day_of_month is not None:
            text += " on the last day" if self.day_of_month == LAST_DAY_OF_MONTH else f" on day {self.day_of_month}"
        elif self.frequency is Frequency.YEARLY and self.month_of_year is not None:
            month = calendar.month_abbr[self.month_of_year]
            if self.day_of_month == LAST_DAY_OF_MONTH:
                text += f" on the last day of {month}"
            elif self.day_of_month is not None:
                text += f" on {month} {self.day_of_month}"

        tail = self.end.describe()
        return f"{text} {tail}" if tail else text
