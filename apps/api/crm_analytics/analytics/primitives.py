from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from crm_analytics.analytics.bucketing import as_utc

Record = Mapping[str, Any]
K = TypeVar("K", bound=Hashable)

_SECONDS_PER_DAY = 24 * 60 * 60
_MONEY = Decimal("0.01")


@dataclass(slots=True)
class GroupTotals:
    count: int = 0
    sum: Decimal = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(_MONEY)


def count(records: Iterable[Record], predicate: Callable[[Record], bool] | None = None) -> int:
    if predicate is None:
        return sum(1 for _ in records)
    return sum(1 for record in records if predicate(record))


def total(records: Iterable[Record], field: str) -> Decimal:
    return sum((to_decimal(record.get(field)) for record in records), start=Decimal("0"))


def grouped_aggregate(
    records: Iterable[Record],
    key_fn: Callable[[Record], K | None],
    *,
    sum_field: str | None = None,
    count_records: bool = True,
) -> dict[K, GroupTotals]:
    """Group records by ``key_fn``; groups keep first-occurrence order.

    Records whose key resolves to ``None`` are skipped.
    """
    groups: dict[K, GroupTotals] = {}
    for record in records:
        key = key_fn(record)
        if key is None:
            continue
        totals = groups.get(key)
        if totals is None:
            totals = GroupTotals()
            groups[key] = totals
        if count_records:
            totals.count += 1
        if sum_field is not None:
            totals.sum += to_decimal(record.get(sum_field))
    return groups


def safe_rate(numerator: int | float | Decimal, denominator: int | float | Decimal) -> float:
    """Percentage ``numerator / denominator * 100``; 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return float(numerator) / float(denominator) * 100


def safe_divide(numerator: Decimal, denominator: int | Decimal) -> Decimal:
    if denominator == 0:
        return Decimal("0")
    return to_decimal(numerator) / to_decimal(denominator)


def elapsed_days(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / _SECONDS_PER_DAY


def mean(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)
