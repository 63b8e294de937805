from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from crm_analytics.analytics.bucketing import Granularity, TimeBucketer, TimeWindow


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_records_before_local_midnight_share_the_local_day_bucket() -> None:
    bucketer = TimeBucketer("Etc/GMT+8")

    late = bucketer.bucket_key(_utc(2024, 3, 10, 23, 50), Granularity.DAY)
    early = bucketer.bucket_key(_utc(2024, 3, 11, 0, 10), Granularity.DAY)

    assert late == early
    assert late.sort_key == "2024-03-10"
    assert late.label == "Mar 10"


def test_same_local_day_shares_bucket_across_dst_transition() -> None:
    bucketer = TimeBucketer("America/Los_Angeles")

    # 00:30 PST and 23:30 PDT on the day clocks spring forward.
    before_switch = bucketer.bucket_key(_utc(2024, 3, 10, 8, 30), Granularity.DAY)
    after_switch = bucketer.bucket_key(_utc(2024, 3, 11, 6, 30), Granularity.DAY)
    next_day = bucketer.bucket_key(_utc(2024, 3, 11, 7, 30), Granularity.DAY)

    assert before_switch.sort_key == after_switch.sort_key == "2024-03-10"
    assert next_day.sort_key == "2024-03-11"


def test_offset_of_the_input_timestamp_does_not_matter() -> None:
    bucketer = TimeBucketer("America/Los_Angeles")
    instant = _utc(2024, 6, 1, 5, 0)
    tokyo = instant.astimezone(ZoneInfo("Asia/Tokyo"))

    assert bucketer.bucket_key(instant, Granularity.DAY) == bucketer.bucket_key(tokyo, Granularity.DAY)
    assert bucketer.bucket_key(instant, Granularity.DAY).sort_key == "2024-05-31"


def test_naive_timestamps_are_read_as_utc() -> None:
    bucketer = TimeBucketer("Etc/GMT+8")

    key = bucketer.bucket_key(datetime(2024, 3, 11, 0, 10), Granularity.DAY)

    assert key.sort_key == "2024-03-10"


@pytest.mark.parametrize(
    ("granularity", "sort_key", "label"),
    [
        (Granularity.DAY, "2024-03-10", "Mar 10"),
        (Granularity.WEEK, "2024-03-W2", "Mar 2024 W2"),
        (Granularity.MONTH, "2024-03", "Mar 2024"),
        (Granularity.QUARTER, "2024-Q1", "Q1 2024"),
    ],
)
def test_bucket_key_formats(granularity: Granularity, sort_key: str, label: str) -> None:
    bucketer = TimeBucketer("UTC")

    key = bucketer.bucket_key(_utc(2024, 3, 10, 12, 0), granularity)

    assert key.sort_key == sort_key
    assert key.label == label


def test_week_of_month_ordinal_boundaries() -> None:
    bucketer = TimeBucketer("UTC")

    assert bucketer.bucket_key(_utc(2024, 3, 7), Granularity.WEEK).sort_key == "2024-03-W1"
    assert bucketer.bucket_key(_utc(2024, 3, 8), Granularity.WEEK).sort_key == "2024-03-W2"
    assert bucketer.bucket_key(_utc(2024, 3, 29), Granularity.WEEK).sort_key == "2024-03-W5"


def test_sort_keys_order_chronologically() -> None:
    bucketer = TimeBucketer("UTC")
    instants = [_utc(2023, 12, 31), _utc(2024, 1, 2), _utc(2024, 1, 10), _utc(2024, 10, 1)]

    for granularity in Granularity:
        keys = [bucketer.bucket_key(instant, granularity).sort_key for instant in instants]
        assert keys == sorted(keys)


def test_granularity_parse_is_lenient() -> None:
    assert Granularity.parse("WEEK") == Granularity.WEEK
    assert Granularity.parse(" quarter ") == Granularity.QUARTER
    assert Granularity.parse("yearly") == Granularity.DAY
    assert Granularity.parse(None) == Granularity.DAY
    assert Granularity.parse("bogus", Granularity.MONTH) == Granularity.MONTH


def test_day_of_week_uses_reference_timezone() -> None:
    bucketer = TimeBucketer("Etc/GMT+8")

    # Monday 02:00 UTC is still Sunday evening eight hours west.
    assert bucketer.day_of_week(_utc(2024, 3, 11, 2, 0)) == 0
    assert bucketer.day_of_week(_utc(2024, 3, 11, 9, 0)) == 1
    assert bucketer.day_of_week(_utc(2024, 3, 16, 12, 0)) == 6


def test_calendar_boundaries_are_local_midnights() -> None:
    bucketer = TimeBucketer("America/Los_Angeles")
    wednesday = _utc(2024, 3, 13, 20, 0)

    assert bucketer.start_of_day(wednesday) == _utc(2024, 3, 13, 7, 0)
    assert bucketer.start_of_week(wednesday) == _utc(2024, 3, 10, 8, 0)
    assert bucketer.start_of_month(wednesday) == _utc(2024, 3, 1, 8, 0)
    assert bucketer.start_of_next_month(wednesday) == _utc(2024, 4, 1, 7, 0)
    assert bucketer.start_of_next_month(_utc(2024, 12, 15)) == _utc(2025, 1, 1, 8, 0)
    assert bucketer.days_before(wednesday, 30) == _utc(2024, 2, 12, 8, 0)


def test_time_window_is_half_open_and_normalized() -> None:
    window = TimeWindow(
        datetime(2024, 3, 1, tzinfo=ZoneInfo("Etc/GMT+8")),
        _utc(2024, 4, 1),
    )

    assert window.start == _utc(2024, 3, 1, 8, 0)
    assert window.contains(window.start)
    assert not window.contains(window.end)
    assert window.contains(window.end - timedelta(microseconds=1))
    assert not window.contains(None)
