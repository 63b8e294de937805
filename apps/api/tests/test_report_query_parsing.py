from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from crm_analytics.analytics.bucketing import Granularity, TimeBucketer
from crm_analytics.analytics.service import parse_report_query


NOW = datetime(2024, 3, 13, 20, 0, tzinfo=timezone.utc)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _defaulted_fields(caplog: pytest.LogCaptureFixture) -> list[str]:
    return [
        getattr(record, "field", "")
        for record in caplog.records
        if record.name == "crm_analytics.analytics" and record.getMessage() == "analytics.input_defaulted"
    ]


def test_missing_parameters_default_to_trailing_window() -> None:
    query = parse_report_query(None, None, None, bucketer=TimeBucketer("UTC"), now=NOW)

    assert query.window.end == NOW
    assert query.window.start == NOW - timedelta(days=30)
    assert query.granularity == Granularity.DAY


def test_date_only_bounds_cover_whole_local_days() -> None:
    bucketer = TimeBucketer("America/Los_Angeles")

    query = parse_report_query("2024-03-01", "2024-03-31", "month", bucketer=bucketer, now=NOW)

    assert query.window.start == _utc(2024, 3, 1, 8)
    assert query.window.end == _utc(2024, 4, 1, 7)
    assert query.granularity == Granularity.MONTH


def test_datetimes_honor_offsets_and_naive_values_use_reference_zone() -> None:
    bucketer = TimeBucketer("Etc/GMT+8")

    query = parse_report_query("2024-03-01T06:00:00Z", "2024-03-02T00:00:00", "WEEK", bucketer=bucketer, now=NOW)

    assert query.window.start == _utc(2024, 3, 1, 6)
    assert query.window.end == _utc(2024, 3, 2, 8)
    assert query.granularity == Granularity.WEEK


def test_malformed_values_fall_back_with_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="crm_analytics.analytics")

    query = parse_report_query("yesterday", "not-a-date", "fortnight", bucketer=TimeBucketer("UTC"), now=NOW)

    assert query.window.end == NOW
    assert query.window.start == NOW - timedelta(days=30)
    assert query.granularity == Granularity.DAY
    assert _defaulted_fields(caplog) == ["endDate", "startDate", "groupBy"]


def test_inverted_window_is_replaced_by_the_default(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="crm_analytics.analytics")

    query = parse_report_query("2024-03-10", "2024-03-01", None, bucketer=TimeBucketer("UTC"), now=NOW, default_days=7)

    assert query.window.end == _utc(2024, 3, 2)
    assert query.window.start == _utc(2024, 2, 24)
    assert _defaulted_fields(caplog) == ["startDate"]


@pytest.mark.parametrize("end_raw", ["9999-12-31", "0001-01-01"])
def test_end_dates_at_calendar_edges_fall_back(end_raw: str, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="crm_analytics.analytics")

    query = parse_report_query(None, end_raw, None, bucketer=TimeBucketer("UTC"), now=NOW)

    assert query.window.end == NOW
    assert query.window.start == NOW - timedelta(days=30)
    assert _defaulted_fields(caplog) == ["endDate"]


def test_start_date_before_the_local_calendar_falls_back(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="crm_analytics.analytics")

    query = parse_report_query("0001-01-01", None, None, bucketer=TimeBucketer("Etc/GMT-8"), now=NOW)

    assert query.window.start == NOW - timedelta(days=30)
    assert _defaulted_fields(caplog) == ["startDate"]
