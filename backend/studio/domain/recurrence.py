from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import AbstractSet, Iterator

from ..models import RecurringClassPattern
from ..utils.time import STUDIO_TZ, to_utc_naive, utc_naive_to_studio


@dataclass(frozen=True)
class Occurrence:
    local_date: date
    starts_at: datetime
    ends_at: datetime


def weekly_dates(day_of_week: int, start: date, weeks_ahead: int) -> Iterator[date]:
    """First `day_of_week` on/after `start + n weeks` for n in 0..weeks_ahead-1."""
    if not 0 <= day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    for week in range(weeks_ahead):
        anchor = start + timedelta(weeks=week)
        yield anchor + timedelta(days=(day_of_week - anchor.weekday()) % 7)


def plan_occurrences(
    pattern: RecurringClassPattern,
    *,
    weeks_ahead: int,
    start_from: datetime,
    holidays: AbstractSet[date] = frozenset(),
) -> list[Occurrence]:
    """Concrete class times for a pattern; `start_from` is naive UTC.

    Dates are evaluated in the studio timezone. Holidays, dates outside the
    pattern's validity window and occurrences not after `start_from` are
    dropped.
    """
    if weeks_ahead < 1:
        raise ValueError("weeks_ahead must be >= 1")
    first_day = utc_naive_to_studio(start_from).date()
    seen: set[date] = set()
    occurrences: list[Occurrence] = []
    for day in weekly_dates(pattern.day_of_week, first_day, weeks_ahead):
        if day in seen or day in holidays:
            continue
        seen.add(day)
        if day < pattern.valid_from:
            continue
        if pattern.valid_until is not None and day > pattern.valid_until:
            continue
        local_start = datetime.combine(day, pattern.start_time, tzinfo=STUDIO_TZ)
        starts_at = to_utc_naive(local_start)
        if starts_at <= start_from:
            continue
        occurrences.append(
            Occurrence(
                local_date=day,
                starts_at=starts_at,
                ends_at=starts_at + timedelta(minutes=pattern.duration_minutes),
            )
        )
    return occurrences
