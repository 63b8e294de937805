from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import StrEnum
from zoneinfo import ZoneInfo

_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class Granularity(StrEnum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"

    @classmethod
    def parse(cls, raw: str | None, default: Granularity | None = None) -> Granularity:
        fallback = default or cls.DAY
        if raw is None:
            return fallback
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return fallback


@dataclass(frozen=True, slots=True)
class BucketKey:
    sort_key: str
    label: str


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open ``[start, end)`` interval in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        moment = as_utc(value)
        return self.start <= moment < self.end


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeBucketer:
    """Maps instants onto calendar buckets of one fixed reference timezone.

    Two records on the same local calendar day always share a bucket no matter
    what offset their timestamps were written with or what the server clock's
    zone is. Empty buckets are never synthesized.
    """

    def __init__(self, zone: tzinfo | str) -> None:
        self.zone: tzinfo = ZoneInfo(zone) if isinstance(zone, str) else zone

    def localize(self, value: datetime) -> datetime:
        return as_utc(value).astimezone(self.zone)

    def local_date(self, value: datetime) -> date:
        return self.localize(value).date()

    def bucket_key(self, value: datetime, granularity: Granularity) -> BucketKey:
        local = self.localize(value)
        year, month, day = local.year, local.month, local.day
        month_name = _MONTH_ABBR[month - 1]

        if granularity == Granularity.DAY:
            return BucketKey(f"{year:04d}-{month:02d}-{day:02d}", f"{month_name} {day}")
        if granularity == Granularity.WEEK:
            week = math.ceil(day / 7)
            return BucketKey(f"{year:04d}-{month:02d}-W{week}", f"{month_name} {year} W{week}")
        if granularity == Granularity.MONTH:
            return BucketKey(f"{year:04d}-{month:02d}", f"{month_name} {year}")
        quarter = (month - 1) // 3 + 1
        return BucketKey(f"{year:04d}-Q{quarter}", f"Q{quarter} {year}")

    def day_of_week(self, value: datetime) -> int:
        """0 = Sunday .. 6 = Saturday, in the reference timezone."""
        return (self.localize(value).weekday() + 1) % 7

    def start_of_day(self, value: datetime) -> datetime:
        return self._local_midnight(self.local_date(value))

    def start_of_week(self, value: datetime) -> datetime:
        local_day = self.local_date(value)
        return self._local_midnight(local_day - timedelta(days=self.day_of_week(value)))

    def start_of_month(self, value: datetime) -> datetime:
        return self._local_midnight(self.local_date(value).replace(day=1))

    def start_of_next_month(self, value: datetime) -> datetime:
        first = self.local_date(value).replace(day=1)
        if first.month == 12:
            return self._local_midnight(first.replace(year=first.year + 1, month=1))
        return self._local_midnight(first.replace(month=first.month + 1))

    def days_before(self, value: datetime, days: int) -> datetime:
        """Local midnight ``days`` calendar days before ``value``."""
        return self._local_midnight(self.local_date(value) - timedelta(days=days))

    def midnight_of(self, day: date) -> datetime:
        return self._local_midnight(day)

    def _local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.zone).astimezone(timezone.utc)
