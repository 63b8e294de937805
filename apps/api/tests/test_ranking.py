from __future__ import annotations

from decimal import Decimal

from crm_analytics.analytics.ranking import count_one, field_value, rank


COMPANY_NAMES = {"acme": "Acme", "globex": "Globex", "initech": "Initech"}

DEALS = [
    {"company_id": "acme", "value": Decimal("100")},
    {"company_id": "globex", "value": Decimal("250")},
    {"company_id": "acme", "value": Decimal("300")},
    {"company_id": None, "value": Decimal("999")},
    {"company_id": "unlinked", "value": Decimal("500")},
    {"company_id": "initech", "value": Decimal("250")},
]


def _rank(records: list[dict], n: int) -> list:
    return rank(
        records,
        key_fn=lambda record: record["company_id"],
        name_fn=lambda record: COMPANY_NAMES.get(record["company_id"]),
        value_fn=field_value("value"),
        n=n,
    )


def test_rank_sums_sorts_and_truncates() -> None:
    leaders = _rank(DEALS, 2)

    assert [(entry.key, entry.name, entry.value) for entry in leaders] == [
        ("acme", "Acme", Decimal("400")),
        ("globex", "Globex", Decimal("250")),
    ]


def test_rank_skips_records_with_missing_references() -> None:
    leaders = _rank(DEALS, 10)

    assert {entry.key for entry in leaders} == {"acme", "globex", "initech"}


def test_rank_ties_keep_first_seen_order() -> None:
    leaders = _rank(DEALS, 10)

    assert [entry.key for entry in leaders] == ["acme", "globex", "initech"]


def test_rank_is_non_increasing_and_bounded() -> None:
    for n in range(0, 5):
        leaders = _rank(DEALS, n)
        assert len(leaders) <= n
        values = [entry.value for entry in leaders]
        assert values == sorted(values, reverse=True)


def test_rank_counts_with_count_one() -> None:
    activities = [{"contact_id": "a"}, {"contact_id": "b"}, {"contact_id": "a"}]

    leaders = rank(
        activities,
        key_fn=lambda record: record["contact_id"],
        name_fn=lambda record: record["contact_id"].upper(),
        value_fn=count_one,
        n=10,
    )

    assert [(entry.name, entry.value) for entry in leaders] == [("A", 2), ("B", 1)]


def test_rank_with_non_positive_n_is_empty() -> None:
    assert _rank(DEALS, 0) == []
    assert _rank(DEALS, -1) == []
