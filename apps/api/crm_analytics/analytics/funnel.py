from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from crm_analytics.analytics.primitives import safe_rate


class FunnelStageName(StrEnum):
    LEADS = "Leads"
    CUSTOMERS = "Customers"
    DEALS = "Deals"
    WON = "Won"


CONVERSION_FUNNEL_STAGES: tuple[FunnelStageName, ...] = (
    FunnelStageName.LEADS,
    FunnelStageName.CUSTOMERS,
    FunnelStageName.DEALS,
    FunnelStageName.WON,
)


@dataclass(frozen=True, slots=True)
class FunnelStep:
    stage: str
    count: int
    conversion_rate: float
    drop_off_rate: float


class FunnelCalculator:
    """Ordered stage chain; every stage converts relative to the one before it.

    The entry stage is pinned at 100% conversion and 0% drop-off. Rates are not
    clamped, so a stage larger than its predecessor reports more than 100%.
    """

    def __init__(self, stages: Sequence[str] = CONVERSION_FUNNEL_STAGES) -> None:
        if not stages:
            raise ValueError("A funnel needs at least one stage")
        self.stages = tuple(str(stage) for stage in stages)

    def compute(self, counts: Mapping[str, int]) -> list[FunnelStep]:
        steps: list[FunnelStep] = []
        previous: int | None = None
        for stage in self.stages:
            current = int(counts.get(stage, 0))
            if previous is None:
                conversion = 100.0
            else:
                conversion = safe_rate(current, previous)
            steps.append(
                FunnelStep(
                    stage=stage,
                    count=current,
                    conversion_rate=conversion,
                    drop_off_rate=100.0 - conversion,
                )
            )
            previous = current
        return steps
