"""Daily, weekly and monthly activity summaries."""

from __future__ import annotations

import calendar
import datetime as dt
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session

from .records import ActivityRow
from .services import fetch_activity_rows

MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(slots=True)
class DailySummary:
    date: dt.date
    total_minutes: int = 0
    total_entries: int = 0


@dataclass(slots=True)
class ClientTotal:
    client_name: str
    total_minutes: int = 0
    total_entries: int = 0


@dataclass(slots=True)
class GroupTotal:
    client_name: str
    label: str
    total_minutes: int = 0
    total_entries: int = 0


@dataclass(slots=True)
class RangeSummary:
    start_date: dt.date
    end_date: dt.date
    total_minutes: int = 0
    total_entries: int = 0
    by_day: List[DailySummary] = field(default_factory=list)
    by_client: List[ClientTotal] = field(default_factory=list)
    groups: List[GroupTotal] = field(default_factory=list)


def week_bounds(day: dt.date) -> Tuple[dt.date, dt.date]:
    start = day - dt.timedelta(days=day.isoweekday() - 1)
    return start, start + dt.timedelta(days=6)


def month_bounds(month_key: str) -> Tuple[dt.date, dt.date]:
    match = MONTH_KEY_PATTERN.match(month_key or "")
    if not match:
        raise ValueError(f"Invalid month key: {month_key!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {month_key!r}")
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, 1), dt.date(year, month, last_day)


def month_key_for(day: dt.date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _in_range(rows: Iterable[ActivityRow], start: dt.date, end: dt.date) -> List[ActivityRow]:
    return [row for row in rows if start <= row.date <= end]


def daily_summary(rows: Iterable[ActivityRow], day: dt.date) -> DailySummary:
    summary = DailySummary(date=day)
    for row in _in_range(rows, day, day):
        summary.total_minutes += row.minutes
        summary.total_entries += 1
    return summary


def client_totals(rows: Iterable[ActivityRow]) -> List[ClientTotal]:
    """Per-client totals, largest first."""
    clients: Dict[str, ClientTotal] = {}
    for row in rows:
        client = clients.setdefault(row.client_display, ClientTotal(client_name=row.client_display))
        client.total_minutes += row.minutes
        client.total_entries += 1
    return sorted(clients.values(), key=lambda item: (-item.total_minutes, item.client_name))


def range_summary(rows: Iterable[ActivityRow], start: dt.date, end: dt.date) -> RangeSummary:
    selected = _in_range(rows, start, end)
    summary = RangeSummary(start_date=start, end_date=end)

    days: Dict[dt.date, DailySummary] = {}
    groups: Dict[Tuple[str, str], GroupTotal] = {}
    for row in selected:
        summary.total_minutes += row.minutes
        summary.total_entries += 1

        day = days.setdefault(row.date, DailySummary(date=row.date))
        day.total_minutes += row.minutes
        day.total_entries += 1

        client_name = row.client_display
        key = (client_name, row.label)
        group = groups.setdefault(key, GroupTotal(client_name=client_name, label=row.label))
        group.total_minutes += row.minutes
        group.total_entries += 1

    summary.by_day = [days[key] for key in sorted(days)]
    summary.by_client = client_totals(selected)
    summary.groups = sorted(
        groups.values(),
        key=lambda item: (-item.total_minutes, item.client_name, item.label),
    )
    return summary


# ----------------------------------------------------------------------
# Store-backed wrappers
# ----------------------------------------------------------------------


def get_daily_summary(db: Session, day: dt.date) -> DailySummary:
    return daily_summary(fetch_activity_rows(db, day, day), day)


def get_range_summary(db: Session, start: dt.date, end: dt.date) -> RangeSummary:
    return range_summary(fetch_activity_rows(db, start, end), start, end)


def get_weekly_summary(db: Session, day: dt.date) -> RangeSummary:
    start, end = week_bounds(day)
    return get_range_summary(db, start, end)


def get_monthly_summary(db: Session, month_key: str) -> RangeSummary:
    start, end = month_bounds(month_key)
    return get_range_summary(db, start, end)
