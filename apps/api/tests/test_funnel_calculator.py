from __future__ import annotations

import pytest

from crm_analytics.analytics.funnel import CONVERSION_FUNNEL_STAGES, FunnelCalculator


def test_conversion_funnel_rates_relative_to_previous_stage() -> None:
    steps = FunnelCalculator().compute({"Leads": 100, "Customers": 40, "Deals": 10, "Won": 4})

    assert [step.stage for step in steps] == ["Leads", "Customers", "Deals", "Won"]
    assert [step.count for step in steps] == [100, 40, 10, 4]
    assert [step.conversion_rate for step in steps] == [100, 40, 25, 40]
    assert [step.drop_off_rate for step in steps] == [0, 60, 75, 60]


def test_entry_stage_is_pinned_and_drop_off_complements_conversion() -> None:
    for counts in ({"Leads": 0}, {"Leads": 3, "Customers": 9, "Deals": 1}, {}):
        steps = FunnelCalculator().compute(counts)

        assert steps[0].conversion_rate == 100
        assert steps[0].drop_off_rate == 0
        for step in steps:
            assert step.drop_off_rate == 100 - step.conversion_rate


def test_empty_funnel_is_zero_after_the_entry_stage() -> None:
    steps = FunnelCalculator().compute({})

    assert [step.count for step in steps] == [0, 0, 0, 0]
    assert [step.conversion_rate for step in steps] == [100, 0, 0, 0]
    assert [step.drop_off_rate for step in steps] == [0, 100, 100, 100]


def test_growth_between_stages_is_not_clamped() -> None:
    steps = FunnelCalculator().compute({"Leads": 2, "Customers": 2, "Deals": 4, "Won": 3})

    assert steps[2].conversion_rate == 200
    assert steps[2].drop_off_rate == -100


def test_custom_stage_chain() -> None:
    steps = FunnelCalculator(["visit", "signup"]).compute({"visit": 50, "signup": 5})

    assert [(step.stage, step.conversion_rate) for step in steps] == [("visit", 100), ("signup", 10)]


def test_funnel_requires_stages() -> None:
    assert len(CONVERSION_FUNNEL_STAGES) == 4
    with pytest.raises(ValueError):
        FunnelCalculator([])
