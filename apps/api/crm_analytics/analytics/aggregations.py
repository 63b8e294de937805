from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from crm_analytics.analytics.bucketing import BucketKey, Granularity, TimeBucketer, TimeWindow, as_utc
from crm_analytics.analytics.funnel import FunnelCalculator, FunnelStageName
from crm_analytics.analytics.primitives import (
    GroupTotals,
    Record,
    elapsed_days,
    grouped_aggregate,
    mean,
    money,
    safe_divide,
    safe_rate,
)
from crm_analytics.analytics.ranking import count_one, field_value, rank
from crm_analytics.analytics.repository import (
    AnalyticsRepository,
    Entity,
    eq,
    in_,
    lt,
    not_null,
    within,
)
from crm_analytics.analytics.schemas import (
    ActivitiesByTypeRow,
    ActivityCard,
    BiggestDealRow,
    CompanyActivityLeader,
    CompanyValueLeader,
    ContactActivityLeader,
    ContactValueLeader,
    CountPoint,
    DealsByStageRow,
    DealsWonLostRow,
    FunnelStageRow,
    HeatmapDay,
    RevenuePoint,
    StageDurationRow,
)
from crm_analytics.crm.enums import ActivityType, ContactStatus, DealStage, DealStatus

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class StageTimeMode(StrEnum):
    ELAPSED = "elapsed"
    LEGACY_TIMESTAMP = "legacy_timestamp"


def contact_name(record: Record) -> str:
    return f"{record['first_name']} {record['last_name']}"


async def contact_names(repository: AnalyticsRepository, ids: Iterable[Any]) -> dict[Any, str]:
    wanted = {contact_id for contact_id in ids if contact_id is not None}
    if not wanted:
        return {}
    rows = await repository.find_many(
        Entity.CONTACT,
        [in_("id", sorted(wanted, key=str))],
        fields=("id", "first_name", "last_name"),
    )
    return {row["id"]: contact_name(row) for row in rows}


async def company_names(repository: AnalyticsRepository, ids: Iterable[Any]) -> dict[Any, str]:
    wanted = {company_id for company_id in ids if company_id is not None}
    if not wanted:
        return {}
    rows = await repository.find_many(Entity.COMPANY, [in_("id", sorted(wanted, key=str))], fields=("id", "name"))
    return {row["id"]: row["name"] for row in rows}


@dataclass(slots=True)
class ReportAggregator:
    """The named metrics of the reporting view.

    Every metric reads its own slice of the store for ``window`` through the
    caller's repository (which already carries the visibility filter), so the
    methods are independent of one another and safe to run concurrently.
    """

    repository: AnalyticsRepository
    bucketer: TimeBucketer
    window: TimeWindow
    granularity: Granularity = Granularity.DAY
    top_n: int = 10
    now: datetime | None = None
    stage_time_mode: StageTimeMode = StageTimeMode.ELAPSED

    def _now(self) -> datetime:
        return as_utc(self.now) if self.now is not None else datetime.now(timezone.utc)

    def _bucketed(
        self, records: Sequence[Record], field: str, sum_field: str | None = None
    ) -> list[tuple[BucketKey, GroupTotals]]:
        groups = grouped_aggregate(
            records,
            lambda record: self.bucketer.bucket_key(record[field], self.granularity) if record.get(field) else None,
            sum_field=sum_field,
        )
        return sorted(groups.items(), key=lambda item: item[0].sort_key)

    def _count_series(self, records: Sequence[Record], field: str) -> list[CountPoint]:
        return [
            CountPoint(date=key.sort_key, label=key.label, count=totals.count)
            for key, totals in self._bucketed(records, field)
        ]

    # Sales performance

    async def revenue_over_time(self) -> list[RevenuePoint]:
        deals = await self.repository.find_many(
            Entity.DEAL,
            [eq("status", DealStatus.WON), *within("actual_close_date", self.window)],
            fields=("actual_close_date", "value"),
            order_by=("actual_close_date",),
        )
        return [
            RevenuePoint(date=key.sort_key, label=key.label, revenue=money(totals.sum))
            for key, totals in self._bucketed(deals, "actual_close_date", "value")
        ]

    async def deals_won_lost(self) -> list[DealsWonLostRow]:
        rows = await self.repository.group_by(
            Entity.DEAL,
            "status",
            [in_("status", [DealStatus.WON, DealStatus.LOST]), *within("actual_close_date", self.window)],
            sum_field="value",
        )
        by_status = {DealStatus(row.key): row for row in rows}
        result = []
        for status in (DealStatus.WON, DealStatus.LOST):
            row = by_status.get(status)
            result.append(
                DealsWonLostRow(
                    status=status,
                    count=row.count if row else 0,
                    value=money(row.sum if row else 0),
                )
            )
        return result

    async def average_deal_size(self) -> Decimal:
        won = await self.repository.aggregate(
            Entity.DEAL,
            [eq("status", DealStatus.WON), *within("actual_close_date", self.window)],
            sum_field="value",
        )
        return money(safe_divide(won.sum, won.count))

    async def win_rate(self) -> float:
        rows = await self.repository.group_by(
            Entity.DEAL,
            "status",
            [in_("status", [DealStatus.WON, DealStatus.LOST]), *within("actual_close_date", self.window)],
        )
        counts = {DealStatus(row.key): row.count for row in rows}
        won = counts.get(DealStatus.WON, 0)
        return safe_rate(won, won + counts.get(DealStatus.LOST, 0))

    # Pipeline

    async def deals_by_stage(self) -> list[DealsByStageRow]:
        rows = await self.repository.group_by(
            Entity.DEAL,
            "stage",
            list(within("created_at", self.window)),
            sum_field="value",
        )
        by_stage = {DealStage(row.key): row for row in rows}
        return [
            DealsByStageRow(
                stage=stage,
                count=by_stage[stage].count if stage in by_stage else 0,
                value=money(by_stage[stage].sum if stage in by_stage else 0),
            )
            for stage in DealStage
        ]

    async def average_time_in_stage(self) -> list[StageDurationRow]:
        entered = await self.repository.find_many(
            Entity.DEAL_STAGE_HISTORY,
            list(within("changed_at", self.window)),
            fields=("id", "deal_id", "to_stage", "changed_at"),
            order_by=("changed_at",),
        )
        if not entered:
            return []

        if self.stage_time_mode == StageTimeMode.LEGACY_TIMESTAMP:
            # Mean entry instant expressed in days since the epoch.
            samples = {
                stage: [elapsed_days(_EPOCH, record["changed_at"]) for record in records]
                for stage, records in _by_stage(entered).items()
            }
        else:
            samples = await self._stage_durations(entered)

        return [
            StageDurationRow(stage=stage, days=mean(samples[stage]))
            for stage in DealStage
            if samples.get(stage)
        ]

    async def _stage_durations(self, entered: Sequence[Record]) -> dict[DealStage, list[float]]:
        history = await self.repository.find_many(
            Entity.DEAL_STAGE_HISTORY,
            [in_("deal_id", sorted({record["deal_id"] for record in entered}, key=str))],
            fields=("id", "deal_id", "to_stage", "changed_at"),
            order_by=("changed_at",),
        )
        transitions: dict[Any, list[Record]] = {}
        for record in history:
            transitions.setdefault(record["deal_id"], []).append(record)

        now = self._now()
        samples: dict[DealStage, list[float]] = {}
        for deal_history in transitions.values():
            for index, record in enumerate(deal_history):
                if not self.window.contains(record["changed_at"]):
                    continue
                left_at = deal_history[index + 1]["changed_at"] if index + 1 < len(deal_history) else now
                samples.setdefault(DealStage(record["to_stage"]), []).append(
                    elapsed_days(record["changed_at"], left_at)
                )
        return samples

    async def pipeline_velocity(self) -> float:
        deals = await self.repository.find_many(
            Entity.DEAL,
            [eq("status", DealStatus.WON), *within("actual_close_date", self.window)],
            fields=("created_at", "actual_close_date"),
        )
        return mean(elapsed_days(deal["created_at"], deal["actual_close_date"]) for deal in deals)

    # Activities

    async def activities_by_type(self) -> list[ActivitiesByTypeRow]:
        rows = await self.repository.group_by(Entity.ACTIVITY, "type", list(within("created_at", self.window)))
        by_type = {ActivityType(row.key): row.count for row in rows}
        return [ActivitiesByTypeRow(type=activity_type, count=by_type.get(activity_type, 0)) for activity_type in ActivityType]

    async def activities_over_time(self) -> list[CountPoint]:
        activities = await self.repository.find_many(
            Entity.ACTIVITY,
            list(within("created_at", self.window)),
            fields=("created_at",),
        )
        return self._count_series(activities, "created_at")

    async def activity_heatmap(self) -> list[HeatmapDay]:
        activities = await self.repository.find_many(
            Entity.ACTIVITY,
            list(within("created_at", self.window)),
            fields=("id", "type", "subject", "description", "created_at", "contact_id"),
            order_by=("created_at",),
        )
        names = await contact_names(self.repository, (activity["contact_id"] for activity in activities))

        days: list[list[ActivityCard]] = [[] for _ in range(7)]
        for activity in activities:
            days[self.bucketer.day_of_week(activity["created_at"])].append(
                ActivityCard(
                    id=activity["id"],
                    type=ActivityType(activity["type"]),
                    subject=activity["subject"],
                    description=activity["description"],
                    created_at=as_utc(activity["created_at"]),
                    contact_id=activity["contact_id"],
                    contact_name=names.get(activity["contact_id"]),
                )
            )
        return [HeatmapDay(day=index, activities=cards) for index, cards in enumerate(days)]

    async def top_contacts_by_activity(self) -> list[ContactActivityLeader]:
        activities = await self.repository.find_many(
            Entity.ACTIVITY,
            list(within("created_at", self.window)),
            fields=("contact_id",),
            order_by=("created_at",),
        )
        names = await contact_names(self.repository, (activity["contact_id"] for activity in activities))
        leaders = rank(
            activities,
            key_fn=lambda record: record["contact_id"],
            name_fn=lambda record: names.get(record["contact_id"]),
            value_fn=count_one,
            n=self.top_n,
        )
        return [ContactActivityLeader(contact_id=entry.key, name=entry.name, count=int(entry.value)) for entry in leaders]

    async def top_companies_by_activity(self) -> list[CompanyActivityLeader]:
        activities = await self.repository.find_many(
            Entity.ACTIVITY,
            list(within("created_at", self.window)),
            fields=("contact_id",),
            order_by=("created_at",),
        )
        contact_ids = sorted({activity["contact_id"] for activity in activities}, key=str)
        contacts = (
            await self.repository.find_many(Entity.CONTACT, [in_("id", contact_ids)], fields=("id", "company_id"))
            if contact_ids
            else []
        )
        company_of = {contact["id"]: contact["company_id"] for contact in contacts}
        names = await company_names(self.repository, company_of.values())

        leaders = rank(
            activities,
            key_fn=lambda record: company_of.get(record["contact_id"]),
            name_fn=lambda record: names.get(company_of.get(record["contact_id"])),
            value_fn=count_one,
            n=self.top_n,
        )
        return [CompanyActivityLeader(company_id=entry.key, name=entry.name, count=int(entry.value)) for entry in leaders]

    # Tasks

    async def task_completion_rate(self) -> float:
        created = list(within("created_at", self.window))
        total, completed = await asyncio.gather(
            self.repository.count(Entity.TASK, created),
            self.repository.count(Entity.TASK, [eq("completed", True), *created]),
        )
        return safe_rate(completed, total)

    async def overdue_tasks_trend(self) -> list[CountPoint]:
        tasks = await self.repository.find_many(
            Entity.TASK,
            [eq("completed", False), lt("due_date", self._now()), *within("created_at", self.window)],
            fields=("created_at",),
        )
        return self._count_series(tasks, "created_at")

    async def tasks_completed_over_time(self) -> list[CountPoint]:
        tasks = await self.repository.find_many(
            Entity.TASK,
            [eq("completed", True), *within("completed_at", self.window)],
            fields=("completed_at",),
        )
        return self._count_series(tasks, "completed_at")

    async def average_time_to_complete(self) -> float:
        tasks = await self.repository.find_many(
            Entity.TASK,
            [eq("completed", True), *within("completed_at", self.window)],
            fields=("created_at", "completed_at"),
        )
        return mean(elapsed_days(task["created_at"], task["completed_at"]) for task in tasks)

    # Funnel and leaderboards

    async def conversion_funnel(self) -> list[FunnelStageRow]:
        created = list(within("created_at", self.window))
        leads, customers, deals, won = await asyncio.gather(
            self.repository.count(Entity.CONTACT, [eq("status", ContactStatus.LEAD), *created]),
            self.repository.count(Entity.CONTACT, [eq("status", ContactStatus.CUSTOMER), *created]),
            self.repository.count(Entity.DEAL, created),
            self.repository.count(
                Entity.DEAL,
                [eq("status", DealStatus.WON), *within("actual_close_date", self.window)],
            ),
        )
        steps = FunnelCalculator().compute(
            {
                FunnelStageName.LEADS: leads,
                FunnelStageName.CUSTOMERS: customers,
                FunnelStageName.DEALS: deals,
                FunnelStageName.WON: won,
            }
        )
        return [
            FunnelStageRow(
                stage=step.stage,
                count=step.count,
                conversion_rate=step.conversion_rate,
                drop_off_rate=step.drop_off_rate,
            )
            for step in steps
        ]

    async def top_companies_by_deal_value(self) -> list[CompanyValueLeader]:
        deals = await self.repository.find_many(
            Entity.DEAL,
            [not_null("company_id"), *within("created_at", self.window)],
            fields=("company_id", "value"),
            order_by=("created_at",),
        )
        names = await company_names(self.repository, (deal["company_id"] for deal in deals))
        leaders = rank(
            deals,
            key_fn=lambda record: record["company_id"],
            name_fn=lambda record: names.get(record["company_id"]),
            value_fn=field_value("value"),
            n=self.top_n,
        )
        return [
            CompanyValueLeader(company_id=entry.key, name=entry.name, total_value=money(entry.value))
            for entry in leaders
        ]

    async def biggest_deals_won_this_month(self) -> list[BiggestDealRow]:
        now = self._now()
        month = TimeWindow(self.bucketer.start_of_month(now), self.bucketer.start_of_next_month(now))
        deals = await self.repository.find_many(
            Entity.DEAL,
            [eq("status", DealStatus.WON), *within("actual_close_date", month)],
            fields=("id", "name", "value", "contact_id"),
            order_by=("-value",),
            take=10,
        )
        names = await contact_names(self.repository, (deal["contact_id"] for deal in deals))
        return [
            BiggestDealRow(
                deal_id=deal["id"],
                name=deal["name"],
                value=money(deal["value"]),
                contact_name=names.get(deal["contact_id"]),
            )
            for deal in deals
        ]

    async def top_contacts_by_deal_value(self) -> list[ContactValueLeader]:
        deals = await self.repository.find_many(
            Entity.DEAL,
            list(within("created_at", self.window)),
            fields=("contact_id", "value"),
            order_by=("created_at",),
        )
        names = await contact_names(self.repository, (deal["contact_id"] for deal in deals))
        leaders = rank(
            deals,
            key_fn=lambda record: record["contact_id"],
            name_fn=lambda record: names.get(record["contact_id"]),
            value_fn=field_value("value"),
            n=self.top_n,
        )
        return [
            ContactValueLeader(contact_id=entry.key, name=entry.name, total_value=money(entry.value))
            for entry in leaders
        ]

    def metrics(self) -> dict[str, Callable[[], Any]]:
        """Metric name to coroutine function, in response order."""
        return {
            "revenue_over_time": self.revenue_over_time,
            "deals_won_lost": self.deals_won_lost,
            "average_deal_size": self.average_deal_size,
            "win_rate": self.win_rate,
            "deals_by_stage": self.deals_by_stage,
            "average_time_in_stage": self.average_time_in_stage,
            "pipeline_velocity": self.pipeline_velocity,
            "activities_by_type": self.activities_by_type,
            "activities_over_time": self.activities_over_time,
            "activity_heatmap": self.activity_heatmap,
            "top_contacts_by_activity": self.top_contacts_by_activity,
            "top_companies_by_activity": self.top_companies_by_activity,
            "task_completion_rate": self.task_completion_rate,
            "overdue_tasks_trend": self.overdue_tasks_trend,
            "tasks_completed_over_time": self.tasks_completed_over_time,
            "average_time_to_complete": self.average_time_to_complete,
            "conversion_funnel": self.conversion_funnel,
            "top_companies_by_deal_value": self.top_companies_by_deal_value,
            "biggest_deals_won_this_month": self.biggest_deals_won_this_month,
            "top_contacts_by_deal_value": self.top_contacts_by_deal_value,
        }


def _by_stage(records: Iterable[Record]) -> dict[DealStage, list[Record]]:
    grouped: dict[DealStage, list[Record]] = {}
    for record in records:
        grouped.setdefault(DealStage(record["to_stage"]), []).append(record)
    return grouped


def empty_value(metric: str) -> Any:
    """Fallback used for a metric that failed under partial results."""
    if metric == "deals_won_lost":
        return [DealsWonLostRow(status=status, count=0, value=money(0)) for status in (DealStatus.WON, DealStatus.LOST)]
    if metric == "activity_heatmap":
        return [HeatmapDay(day=index, activities=[]) for index in range(7)]
    if metric == "deals_by_stage":
        return [DealsByStageRow(stage=stage, count=0, value=money(0)) for stage in DealStage]
    if metric == "activities_by_type":
        return [ActivitiesByTypeRow(type=activity_type, count=0) for activity_type in ActivityType]
    if metric == "average_deal_size":
        return money(0)
    if metric in {"win_rate", "pipeline_velocity", "task_completion_rate", "average_time_to_complete"}:
        return 0.0
    return []


