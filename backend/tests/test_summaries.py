from __future__ import annotations

import datetime as dt

import pytest

from taskdesk import services
from taskdesk.records import NO_CLIENT_LABEL
from taskdesk.summaries import (
    daily_summary,
    get_monthly_summary,
    get_weekly_summary,
    month_bounds,
    range_summary,
    week_bounds,
)


def _three_day_rows(make_row):
    return [
        make_row("2026-01-14", 30, title="Analisi", client_name="Acme"),
        make_row("2026-01-15", 45, title="Riunione", client_name="Beta"),
        make_row("2026-01-16", 20, title="Supporto", client_name="Acme"),
    ]


def test_daily_summary_counts_only_that_day(make_row):
    summary = daily_summary(_three_day_rows(make_row), dt.date(2026, 1, 14))
    assert summary.total_minutes == 30
    assert summary.total_entries == 1


def test_range_summary_breakdowns(make_row):
    summary = range_summary(_three_day_rows(make_row), dt.date(2026, 1, 13), dt.date(2026, 1, 19))
    assert summary.total_minutes == 95
    assert summary.total_entries == 3
    assert len(summary.by_day) == 3
    assert [item.date for item in summary.by_day] == [
        dt.date(2026, 1, 14),
        dt.date(2026, 1, 15),
        dt.date(2026, 1, 16),
    ]
    assert len(summary.by_client) == 2
    assert summary.by_client[0].client_name == "Acme"
    assert summary.by_client[0].total_minutes == 50


def test_empty_range_is_zero(make_row):
    summary = range_summary([], dt.date(2026, 2, 1), dt.date(2026, 2, 28))
    assert summary.total_minutes == 0
    assert summary.total_entries == 0
    assert summary.by_day == []
    assert summary.by_client == []
    assert summary.groups == []


def test_groups_use_reference_before_title(make_row):
    rows = [
        make_row("2026-03-02", 30, title="Chiamata", client_name="Acme", reference_verbale="VB-12"),
        make_row("2026-03-03", 15, title="Verifica", client_name="Acme", reference_verbale="VB-12"),
        make_row("2026-03-03", 10, title="Chiamata", client_name="Acme"),
    ]
    summary = range_summary(rows, dt.date(2026, 3, 1), dt.date(2026, 3, 31))
    buckets = {(group.client_name, group.label): group.total_minutes for group in summary.groups}
    assert buckets == {("Acme", "VB-12"): 45, ("Acme", "Chiamata"): 10}


def test_blank_reference_falls_back_to_title(make_row):
    rows = [
        make_row("2026-03-02", 30, title="Foo", reference_verbale=""),
        make_row("2026-03-02", 20, title="Foo", reference_verbale=None),
    ]
    summary = range_summary(rows, dt.date(2026, 3, 2), dt.date(2026, 3, 2))
    assert len(summary.groups) == 1
    group = summary.groups[0]
    assert group.client_name == NO_CLIENT_LABEL
    assert group.label == "Foo"
    assert group.total_minutes == 50
    assert group.total_entries == 2


def test_reference_is_compared_as_stored(make_row):
    rows = [
        make_row("2026-03-02", 30, title="Foo", reference_verbale="VB-1"),
        make_row("2026-03-02", 20, title="Foo", reference_verbale=" VB-1"),
    ]
    summary = range_summary(rows, dt.date(2026, 3, 2), dt.date(2026, 3, 2))
    assert sorted(group.label for group in summary.groups) == [" VB-1", "VB-1"]


def test_week_bounds_are_iso_monday_to_sunday():
    assert week_bounds(dt.date(2026, 1, 14)) == (dt.date(2026, 1, 12), dt.date(2026, 1, 18))
    assert week_bounds(dt.date(2026, 1, 12)) == (dt.date(2026, 1, 12), dt.date(2026, 1, 18))
    assert week_bounds(dt.date(2026, 1, 18)) == (dt.date(2026, 1, 12), dt.date(2026, 1, 18))


def test_month_bounds_handles_leap_years():
    assert month_bounds("2024-02") == (dt.date(2024, 2, 1), dt.date(2024, 2, 29))
    assert month_bounds("2026-12") == (dt.date(2026, 12, 1), dt.date(2026, 12, 31))


@pytest.mark.parametrize("key", ["2026-13", "2026-1", "gennaio", ""])
def test_month_bounds_rejects_bad_keys(key):
    with pytest.raises(ValueError):
        month_bounds(key)


def test_store_backed_summaries(session):
    services.create_activity(session, "2026-01-14", "Analisi", 30, client_name="Acme")
    services.create_activity(session, "2026-01-15", "Riunione", 45, client_name="Beta")
    services.create_activity(session, "2026-01-16", "Supporto", 20)
    services.create_activity(session, "2026-02-02", "Fuori mese", 60, client_name="Acme")

    weekly = get_weekly_summary(session, dt.date(2026, 1, 15))
    assert weekly.start_date == dt.date(2026, 1, 12)
    assert weekly.total_minutes == 95
    assert {item.client_name for item in weekly.by_client} == {"Acme", "Beta", NO_CLIENT_LABEL}

    monthly = get_monthly_summary(session, "2026-01")
    assert monthly.total_entries == 3
    assert get_monthly_summary(session, "2026-03").total_minutes == 0
