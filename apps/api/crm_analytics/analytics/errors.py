from __future__ import annotations


class AnalyticsError(Exception):
    """Base error for analytics aggregation failures."""


class AggregationFailedError(AnalyticsError):
    """A sub-aggregation of a composed report failed; the cause is chained."""

    def __init__(self, metric: str) -> None:
        self.metric = metric
        super().__init__(f"Aggregation '{metric}' failed")


class AggregationTimeoutError(AnalyticsError):
    """The composed request did not finish before its deadline."""

    def __init__(self, deadline_seconds: float) -> None:
        self.deadline_seconds = deadline_seconds
        super().__init__(f"Aggregations did not complete within {deadline_seconds:g}s")
