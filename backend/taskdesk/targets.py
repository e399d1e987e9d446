"""Gap between logged minutes and the daily target."""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .summaries import DailySummary, RangeSummary, month_bounds, month_key_for, week_bounds

SMART_SLOT_CANDIDATES = (10, 15, 20, 25)
SMART_SLOT_MIN = 10
SMART_SLOT_MAX = 25
SMART_SLOT_LIMIT = 9
HORIZONS = ("day", "week", "month")


@dataclass(slots=True)
class DayRow:
    date: dt.date
    total_minutes: int
    total_entries: int
    gap_minutes: int
    is_working_day: bool


@dataclass(slots=True)
class GapReport:
    horizon: str
    start_date: dt.date
    end_date: dt.date
    target_minutes_per_day: int
    working_days: int
    target_minutes: int
    actual_minutes: int
    gap_minutes: int
    incomplete_working_days: int
    suggested_daily_minutes: int
    progress_percent: float
    days: List[DayRow] = field(default_factory=list)


def is_working_day(day: dt.date, working_days_per_week: int = 5) -> bool:
    weekday = day.weekday()
    if working_days_per_week >= 7:
        return True
    if working_days_per_week == 6:
        return weekday != 6
    return weekday < 5


def horizon_bounds(horizon: str, day: dt.date) -> Tuple[dt.date, dt.date]:
    if horizon == "day":
        return day, day
    if horizon == "week":
        return week_bounds(day)
    if horizon == "month":
        return month_bounds(month_key_for(day))
    raise ValueError(f"Unsupported horizon: {horizon}")


def _each_day(start: dt.date, end: dt.date) -> Iterable[dt.date]:
    current = start
    while current <= end:
        yield current
        current += dt.timedelta(days=1)


def working_days_in_range(start: dt.date, end: dt.date, working_days_per_week: int = 5) -> int:
    return sum(1 for day in _each_day(start, end) if is_working_day(day, working_days_per_week))


def gap_minutes(target_minutes_per_day: int, working_days: int, actual_minutes: int) -> int:
    return max(target_minutes_per_day * working_days - actual_minutes, 0)


def day_gap(target_minutes_per_day: int, day: DailySummary) -> int:
    return gap_minutes(target_minutes_per_day, 1, day.total_minutes)


def range_gap(target_minutes_per_day: int, summary: RangeSummary, working_days_per_week: int = 5) -> int:
    days = working_days_in_range(summary.start_date, summary.end_date, working_days_per_week)
    return gap_minutes(target_minutes_per_day, days, summary.total_minutes)


def week_gap(target_minutes_per_day: int, summary: RangeSummary, working_days_per_week: int = 5) -> int:
    return range_gap(target_minutes_per_day, summary, working_days_per_week)


def month_gap(target_minutes_per_day: int, summary: RangeSummary, working_days_per_week: int = 5) -> int:
    return range_gap(target_minutes_per_day, summary, working_days_per_week)


def incomplete_working_days(
    start: dt.date,
    end: dt.date,
    by_day: Sequence[DailySummary],
    working_days_per_week: int = 5,
) -> int:
    logged = {item.date: item.total_minutes for item in by_day}
    return sum(
        1
        for day in _each_day(start, end)
        if is_working_day(day, working_days_per_week) and logged.get(day, 0) == 0
    )


def suggested_daily_minutes(gap: int, incomplete_days: int) -> int:
    if incomplete_days <= 0:
        return 0
    return math.ceil(gap / incomplete_days)


def daily_rows(
    start: dt.date,
    end: dt.date,
    by_day: Sequence[DailySummary],
    target_minutes_per_day: int,
    working_days_per_week: int = 5,
) -> List[DayRow]:
    lookup: Dict[dt.date, DailySummary] = {item.date: item for item in by_day}
    rows: List[DayRow] = []
    for day in _each_day(start, end):
        summary = lookup.get(day)
        total = summary.total_minutes if summary else 0
        rows.append(
            DayRow(
                date=day,
                total_minutes=total,
                total_entries=summary.total_entries if summary else 0,
                gap_minutes=max(target_minutes_per_day - total, 0),
                is_working_day=is_working_day(day, working_days_per_week),
            )
        )
    return rows


def smart_slots(gap: int, patterns: Optional[Sequence[int]] = None) -> List[int]:
    """Split a gap into activity durations, preferring the user's usual ones."""
    if gap <= 0:
        return []
    patterns = list(patterns or [])

    def _rank(candidate: int) -> tuple:
        if candidate in patterns:
            return (0, patterns.index(candidate))
        return (1, -candidate)

    ordered = sorted(SMART_SLOT_CANDIDATES, key=_rank)
    slots: List[int] = []
    remaining = gap
    while remaining >= SMART_SLOT_MIN and len(slots) < SMART_SLOT_LIMIT:
        ceiling = min(SMART_SLOT_MAX, remaining)
        candidate = next((value for value in ordered if value <= ceiling), SMART_SLOT_MIN)
        slots.append(candidate)
        remaining -= candidate
    return slots


def build_gap_report(
    horizon: str,
    summary: RangeSummary,
    target_minutes_per_day: int,
    working_days_per_week: int = 5,
) -> GapReport:
    if horizon not in HORIZONS:
        raise ValueError(f"Unsupported horizon: {horizon}")
    if horizon == "day":
        working_days = 1
    else:
        working_days = working_days_in_range(summary.start_date, summary.end_date, working_days_per_week)
    target = target_minutes_per_day * working_days
    gap = gap_minutes(target_minutes_per_day, working_days, summary.total_minutes)
    if horizon == "day":
        incomplete = 1 if gap > 0 else 0
    else:
        incomplete = incomplete_working_days(
            summary.start_date, summary.end_date, summary.by_day, working_days_per_week
        )
    progress = min(summary.total_minutes / target * 100, 100.0) if target else 0.0
    return GapReport(
        horizon=horizon,
        start_date=summary.start_date,
        end_date=summary.end_date,
        target_minutes_per_day=target_minutes_per_day,
        working_days=working_days,
        target_minutes=target,
        actual_minutes=summary.total_minutes,
        gap_minutes=gap,
        incomplete_working_days=incomplete,
        suggested_daily_minutes=suggested_daily_minutes(gap, incomplete),
        progress_percent=round(progress, 2),
        days=daily_rows(
            summary.start_date, summary.end_date, summary.by_day, target_minutes_per_day, working_days_per_week
        ),
    )
