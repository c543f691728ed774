"""Month grid, navigation and day bucketing."""

from datetime import date, datetime

import pytest

from lawcal.forms import ValidationError
from lawcal.grid import (
    SATURDAY,
    SUNDAY,
    CalendarView,
    add_months,
    bucket_by_day,
    month_bounds,
    month_days,
    parse_month,
)


def test_exact_month_days_cover_the_month_in_order():
    days = month_days(date(2024, 6, 1), padded=False)
    assert len(days) == 30
    assert days[0] == date(2024, 6, 1)
    assert days[-1] == date(2024, 6, 30)
    assert all((b - a).days == 1 for a, b in zip(days, days[1:]))


def test_padded_grid_starts_on_saturday_and_fills_weeks():
    # 1 Feb 2024 is a Thursday; 29 Feb is a Thursday.
    days = month_days(date(2024, 2, 1), padded=True, week_start=SATURDAY)
    assert days[0] == date(2024, 1, 27)
    assert days[0].weekday() == SATURDAY
    assert days[-1] == date(2024, 3, 1)
    assert len(days) % 7 == 0
    assert [d for d in days if d.month == 2] == month_days(date(2024, 2, 1), padded=False)


def test_padded_grid_without_leading_days():
    # 1 June 2024 is a Saturday, 30 June a Sunday.
    days = month_days(date(2024, 6, 1), padded=True)
    assert days[0] == date(2024, 6, 1)
    assert days[-1] == date(2024, 7, 5)
    assert len(days) == 35


def test_other_week_start():
    days = month_days(date(2024, 6, 1), padded=True, week_start=SUNDAY)
    assert days[0] == date(2024, 5, 26)
    assert days[-1] == date(2024, 7, 6)


def test_month_arithmetic():
    assert add_months(date(2024, 12, 1), 1) == date(2025, 1, 1)
    assert add_months(date(2024, 1, 1), -1) == date(2023, 12, 1)
    assert month_bounds(date(2023, 2, 14)) == (date(2023, 2, 1), date(2023, 2, 28))


def test_parse_month():
    assert parse_month("2024-06") == date(2024, 6, 1)
    assert parse_month("2024-06-17") == date(2024, 6, 1)
    assert parse_month(None, today=date(2025, 3, 9)) == date(2025, 3, 1)
    with pytest.raises(ValidationError):
        parse_month("June")


def test_bucket_by_day_uses_calendar_day_equality():
    records = [
        {"id": 1, "date": "2024-06-10"},
        {"id": 2, "date": "2024-06-10T23:59:00"},
        {"id": 3, "date": date(2024, 6, 11)},
        {"id": 4, "date": datetime(2024, 6, 11, 8, 30)},
        {"id": 5, "date": "not a date"},
        {"id": 6, "date": None},
    ]
    buckets = bucket_by_day(records, "date")
    assert [r["id"] for r in buckets[date(2024, 6, 10)]] == [1, 2]
    assert [r["id"] for r in buckets[date(2024, 6, 11)]] == [3, 4]
    assert len(buckets) == 2


def test_stale_fetch_is_discarded_after_navigation():
    view = CalendarView(date(2024, 6, 1), date_key="session_date")
    generation = view.begin_fetch()
    view.next_month()
    assert view.current_month == date(2024, 7, 1)
    assert not view.apply_fetch(generation, [{"session_date": "2024-06-10"}])
    assert view.records_for(date(2024, 6, 10)) == []

    fresh = view.begin_fetch()
    assert view.apply_fetch(fresh, [{"session_date": "2024-07-02"}])
    assert len(view.records_for(date(2024, 7, 2))) == 1


def test_cells_mark_outside_days_and_today():
    view = CalendarView(date(2024, 2, 1))
    cells = view.cells(today=date(2024, 2, 14))
    assert cells[0] == {"date": "2024-01-27", "day": 27, "in_month": False, "is_today": False, "items": []}
    assert [c["date"] for c in cells if c["is_today"]] == ["2024-02-14"]
    view.prev_month()
    assert view.current_month == date(2024, 1, 1)


def test_load_buckets_without_a_generation():
    view = CalendarView(date(2024, 6, 1), padded=False)
    view.load([{"date": "2024-06-03", "id": 1}, {"date": "2024-06-03", "id": 2}])
    cells = {c["date"]: c["items"] for c in view.cells(today=date(2024, 6, 1))}
    assert [r["id"] for r in cells["2024-06-03"]] == [1, 2]
    assert view.generation == 0
