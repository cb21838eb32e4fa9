from datetime import date, datetime, time
from typing import Optional

import pytest
from studio.domain.recurrence import plan_occurrences, weekly_dates
from studio.models import RecurringClassPattern

# 2025-03-10 is a Monday; 12:00 UTC is 09:00 in Buenos Aires
NOW = datetime(2025, 3, 10, 12, 0)


def make_pattern(
    *,
    day_of_week: int = 0,
    start_time: time = time(18, 0),
    valid_from: date = date(2025, 1, 1),
    valid_until: Optional[date] = None,
) -> RecurringClassPattern:
    return RecurringClassPattern(
        id=1,
        name="Monday evening",
        class_type_id=1,
        location_id=1,
        day_of_week=day_of_week,
        start_time=start_time,
        duration_minutes=180,
        capacity=6,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=True,
    )


def test_weekly_dates_lands_on_requested_weekday() -> None:
    days = list(weekly_dates(2, date(2025, 3, 10), 3))
    assert days == [date(2025, 3, 12), date(2025, 3, 19), date(2025, 3, 26)]
    assert all(d.weekday() == 2 for d in days)


def test_weekly_dates_rejects_bad_weekday() -> None:
    with pytest.raises(ValueError):
        list(weekly_dates(7, date(2025, 3, 10), 1))


def test_local_start_time_is_stored_as_utc() -> None:
    occurrences = plan_occurrences(make_pattern(), weeks_ahead=3, start_from=NOW)
    assert [o.local_date for o in occurrences] == [date(2025, 3, 10), date(2025, 3, 17), date(2025, 3, 24)]
    assert occurrences[0].starts_at == datetime(2025, 3, 10, 21, 0)
    assert occurrences[0].ends_at == datetime(2025, 3, 11, 0, 0)


def test_skips_occurrence_already_started() -> None:
    occurrences = plan_occurrences(make_pattern(), weeks_ahead=2, start_from=datetime(2025, 3, 10, 22, 0))
    assert [o.local_date for o in occurrences] == [date(2025, 3, 17)]


def test_skips_holidays_and_validity_window() -> None:
    pattern = make_pattern(valid_from=date(2025, 3, 15), valid_until=date(2025, 3, 31))
    occurrences = plan_occurrences(
        pattern,
        weeks_ahead=4,
        start_from=NOW,
        holidays={date(2025, 3, 24)},
    )
    assert [o.local_date for o in occurrences] == [date(2025, 3, 17), date(2025, 3, 31)]


def test_weeks_ahead_must_be_positive() -> None:
    with pytest.raises(ValueError):
        plan_occurrences(make_pattern(), weeks_ahead=0, start_from=NOW)
