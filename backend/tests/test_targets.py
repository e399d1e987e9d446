from __future__ import annotations

import datetime as dt

import pytest

from taskdesk.summaries import DailySummary, range_summary
from taskdesk.targets import (
    build_gap_report,
    day_gap,
    gap_minutes,
    horizon_bounds,
    incomplete_working_days,
    is_working_day,
    smart_slots,
    suggested_daily_minutes,
    month_gap,
    week_gap,
    working_days_in_range,
)

MONDAY = dt.date(2026, 1, 12)
SUNDAY = dt.date(2026, 1, 18)


def test_week_with_only_monday_logged(make_row):
    summary = range_summary([make_row(MONDAY, 90)], MONDAY, SUNDAY)
    assert week_gap(480, summary, 5) == 480 * 5 - 90 == 2310


def test_gap_report_for_week(make_row):
    summary = range_summary([make_row(MONDAY, 90)], MONDAY, SUNDAY)
    report = build_gap_report("week", summary, 480, 5)
    assert report.working_days == 5
    assert report.target_minutes == 2400
    assert report.gap_minutes == 2310
    assert report.incomplete_working_days == 4
    assert report.suggested_daily_minutes == 578
    assert report.progress_percent == pytest.approx(3.75)
    assert [day.date for day in report.days][0] == MONDAY
    assert len(report.days) == 7
    assert report.days[0].gap_minutes == 390
    assert report.days[5].is_working_day is False


def test_gap_is_never_negative_and_decreases():
    previous = None
    for actual in range(0, 3000, 50):
        gap = gap_minutes(480, 5, actual)
        assert gap >= 0
        if previous is not None and previous > 0:
            assert gap < previous
        previous = gap
    assert gap_minutes(480, 5, 5000) == 0


def test_working_day_counts_are_ordered():
    five = working_days_in_range(MONDAY, SUNDAY, 5)
    six = working_days_in_range(MONDAY, SUNDAY, 6)
    seven = working_days_in_range(MONDAY, SUNDAY, 7)
    assert five <= six <= seven == 7
    assert (five, six) == (5, 6)


def test_is_working_day_policies():
    saturday = dt.date(2026, 1, 17)
    assert not is_working_day(saturday, 5)
    assert is_working_day(saturday, 6)
    assert not is_working_day(SUNDAY, 6)
    assert is_working_day(SUNDAY, 7)


def test_day_gap_ignores_weekends():
    assert day_gap(480, DailySummary(date=SUNDAY, total_minutes=60, total_entries=1)) == 420


def test_suggested_daily_minutes_rounds_up_and_handles_no_days():
    assert suggested_daily_minutes(100, 3) == 34
    assert suggested_daily_minutes(100, 0) == 0
    assert suggested_daily_minutes(0, 4) == 0


def test_incomplete_days_skip_logged_and_weekend_days():
    by_day = [
        DailySummary(date=MONDAY, total_minutes=60, total_entries=1),
        DailySummary(date=dt.date(2026, 1, 17), total_minutes=30, total_entries=1),
    ]
    assert incomplete_working_days(MONDAY, SUNDAY, by_day, 5) == 4
    assert incomplete_working_days(MONDAY, SUNDAY, by_day, 7) == 5


def test_fully_logged_month_suggests_nothing(make_row):
    start, end = horizon_bounds("month", dt.date(2026, 2, 10))
    rows = [make_row(day, 480) for day in (start + dt.timedelta(days=i) for i in range((end - start).days + 1))]
    report = build_gap_report("month", range_summary(rows, start, end), 480, 5)
    assert report.gap_minutes == 0
    assert report.suggested_daily_minutes == 0
    assert report.progress_percent == 100.0


def test_day_report_counts_one_incomplete_day_when_short(make_row):
    day = dt.date(2026, 1, 14)
    report = build_gap_report("day", range_summary([make_row(day, 300)], day, day), 480, 5)
    assert report.gap_minutes == 180
    assert report.incomplete_working_days == 1
    assert report.suggested_daily_minutes == 180


def test_unknown_horizon_is_rejected(make_row):
    with pytest.raises(ValueError):
        build_gap_report("year", range_summary([], MONDAY, SUNDAY), 480)
    with pytest.raises(ValueError):
        horizon_bounds("year", MONDAY)


def test_smart_slots_prefer_usual_durations():
    assert smart_slots(0) == []
    assert smart_slots(60) == [25, 25, 10]
    assert smart_slots(60, [15, 30]) == [15, 15, 15, 15]
    slots = smart_slots(480)
    assert len(slots) == 9
    assert all(10 <= slot <= 25 for slot in slots)


def test_month_gap_counts_working_days(make_row):
    start, end = horizon_bounds("month", dt.date(2026, 1, 20))
    summary = range_summary([make_row(dt.date(2026, 1, 2), 480)], start, end)
    assert working_days_in_range(start, end, 5) == 22
    assert month_gap(480, summary, 5) == 480 * 22 - 480
