from crm_analytics.analytics.bucketing import BucketKey, Granularity, TimeBucketer, TimeWindow
from crm_analytics.analytics.composer import AggregationComposer, ComposedResult, MetricJob
from crm_analytics.analytics.errors import AggregationFailedError, AggregationTimeoutError, AnalyticsError
from crm_analytics.analytics.funnel import CONVERSION_FUNNEL_STAGES, FunnelCalculator, FunnelStep
from crm_analytics.analytics.ranking import RankedEntry, rank
from crm_analytics.analytics.repository import AnalyticsRepository, Entity, SqlAlchemyAnalyticsRepository

__all__ = [
    "AggregationComposer",
    "AggregationFailedError",
    "AggregationTimeoutError",
    "AnalyticsError",
    "AnalyticsRepository",
    "BucketKey",
    "CONVERSION_FUNNEL_STAGES",
    "ComposedResult",
    "Entity",
    "FunnelCalculator",
    "FunnelStep",
    "Granularity",
    "MetricJob",
    "RankedEntry",
    "SqlAlchemyAnalyticsRepository",
    "TimeBucketer",
    "TimeWindow",
    "rank",
]
