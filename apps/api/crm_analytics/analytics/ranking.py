from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from crm_analytics.analytics.primitives import Record, to_decimal


@dataclass(frozen=True, slots=True)
class RankedEntry:
    key: Any
    name: str
    value: Decimal | int


def rank(
    records: Iterable[Record],
    key_fn: Callable[[Record], Hashable | None],
    name_fn: Callable[[Record], str | None],
    value_fn: Callable[[Record], Decimal | int],
    n: int,
) -> list[RankedEntry]:
    """Leaderboard of the ``n`` keys with the largest summed value.

    Records with no key, or whose name cannot be resolved (for example a deal
    whose company was unlinked), are skipped. Ties keep the order in which the
    keys were first seen.
    """
    if n <= 0:
        return []

    names: dict[Hashable, str] = {}
    totals: dict[Hashable, Decimal | int] = {}
    for record in records:
        key = key_fn(record)
        if key is None:
            continue
        name = name_fn(record)
        if name is None:
            continue
        value = value_fn(record)
        if key not in totals:
            names[key] = name
            totals[key] = value
        else:
            totals[key] = totals[key] + value

    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [RankedEntry(key=key, name=names[key], value=value) for key, value in ordered[:n]]


def count_one(_: Record) -> int:
    return 1


def field_value(field: str) -> Callable[[Record], Decimal]:
    def _value(record: Record) -> Decimal:
        return to_decimal(record.get(field))

    return _value
