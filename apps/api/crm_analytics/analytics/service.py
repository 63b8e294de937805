from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from crm_analytics.analytics.aggregations import ReportAggregator, StageTimeMode, empty_value
from crm_analytics.analytics.bucketing import Granularity, TimeBucketer, TimeWindow
from crm_analytics.analytics.composer import AggregationComposer, ComposedResult, MetricJob
from crm_analytics.analytics.dashboard import DashboardAggregator, DashboardWindow, empty_fields
from crm_analytics.analytics.repository import AnalyticsRepository
from crm_analytics.analytics.schemas import DashboardRead, ReportRead
from crm_analytics.core.config import Settings, get_settings

logger = logging.getLogger("crm_analytics.analytics")


@dataclass(frozen=True, slots=True)
class ReportQuery:
    window: TimeWindow
    granularity: Granularity


def _parse_instant(raw: str, bucketer: TimeBucketer, *, end_of_day: bool) -> datetime:
    """ISO date or datetime; naive values are read in the reference timezone."""
    text = raw.strip()
    if len(text) == 10:
        day = date.fromisoformat(text)
        if end_of_day:
            day = day + timedelta(days=1)
        return bucketer.midnight_of(day)

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=bucketer.zone)
    return parsed.astimezone(timezone.utc)


def parse_report_query(
    start_raw: str | None,
    end_raw: str | None,
    group_by_raw: str | None,
    *,
    bucketer: TimeBucketer,
    now: datetime,
    default_days: int = 30,
) -> ReportQuery:
    """Lenient report parameters: anything missing or malformed takes its default.

    The default window is the ``default_days`` days ending at ``now``. A
    date-only ``endDate`` covers that whole local day.
    """
    end, start = now, now - timedelta(days=default_days)
    if end_raw:
        # Dates at the calendar edges parse but overflow once shifted.
        try:
            end = _parse_instant(end_raw, bucketer, end_of_day=True)
            start = end - timedelta(days=default_days)
        except (ValueError, OverflowError):
            logger.warning("analytics.input_defaulted", extra={"field": "endDate", "value": end_raw[:64]})
            end, start = now, now - timedelta(days=default_days)

    if start_raw:
        try:
            start = _parse_instant(start_raw, bucketer, end_of_day=False)
        except (ValueError, OverflowError):
            logger.warning("analytics.input_defaulted", extra={"field": "startDate", "value": start_raw[:64]})

    if start > end:
        logger.warning(
            "analytics.input_defaulted",
            extra={"field": "startDate", "value": start.isoformat()},
        )
        start = end - timedelta(days=default_days)

    granularity = Granularity.parse(group_by_raw)
    if group_by_raw is not None and granularity.value != group_by_raw.strip().lower():
        logger.warning("analytics.input_defaulted", extra={"field": "groupBy", "value": group_by_raw[:64]})

    return ReportQuery(window=TimeWindow(start, end), granularity=granularity)


@dataclass(slots=True)
class ComposedReport:
    report: ReportRead
    metric_errors: dict[str, str]


@dataclass(slots=True)
class ComposedDashboard:
    dashboard: DashboardRead
    metric_errors: dict[str, str]


class AnalyticsService:
    """Builds the report and dashboard responses for one caller's repository."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def bucketer(self) -> TimeBucketer:
        return TimeBucketer(self.settings.analytics_timezone)

    def composer(self) -> AggregationComposer:
        return AggregationComposer(
            deadline_seconds=self.settings.analytics_deadline_seconds,
            partial=self.settings.analytics_partial_results,
        )

    async def report(
        self,
        repository: AnalyticsRepository,
        query: ReportQuery,
        *,
        now: datetime | None = None,
    ) -> ComposedReport:
        aggregator = ReportAggregator(
            repository=repository,
            bucketer=self.bucketer(),
            window=query.window,
            granularity=query.granularity,
            top_n=self.settings.analytics_top_n,
            now=now or datetime.now(timezone.utc),
            stage_time_mode=StageTimeMode(self.settings.analytics_stage_time_mode),
        )
        jobs = [
            MetricJob(name=name, run=run, fallback=lambda name=name: empty_value(name))
            for name, run in aggregator.metrics().items()
        ]
        result: ComposedResult = await self.composer().compose(jobs, query="report")
        report = ReportRead(
            start_date=query.window.start,
            end_date=query.window.end,
            group_by=query.granularity.value,
            **result.values,
        )
        return ComposedReport(report=report, metric_errors=result.errors)

    async def dashboard(self, repository: AnalyticsRepository, *, now: datetime | None = None) -> ComposedDashboard:
        bucketer = self.bucketer()
        window = DashboardWindow.at(
            now or datetime.now(timezone.utc),
            bucketer,
            growth_days=self.settings.analytics_default_window_days,
        )
        aggregator = DashboardAggregator(
            repository=repository,
            bucketer=bucketer,
            window=window,
            recent_limit=self.settings.analytics_recent_limit,
        )
        jobs = [
            MetricJob(name=name, run=run, fallback=lambda name=name: empty_fields(name))
            for name, run in aggregator.jobs().items()
        ]
        result = await self.composer().compose(jobs, query="dashboard")

        fields: dict[str, object] = {}
        for slice_ in result.values.values():
            fields.update(slice_)
        return ComposedDashboard(dashboard=DashboardRead(**fields), metric_errors=result.errors)


analytics_service = AnalyticsService()
