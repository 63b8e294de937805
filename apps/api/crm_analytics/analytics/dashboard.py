from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from crm_analytics.analytics.aggregations import company_names
from crm_analytics.analytics.bucketing import Granularity, TimeBucketer, as_utc
from crm_analytics.analytics.primitives import GroupTotals, count, grouped_aggregate, money, safe_divide, safe_rate
from crm_analytics.analytics.ranking import field_value, rank
from crm_analytics.analytics.repository import AnalyticsRepository, Entity, eq, gte, in_, lt, not_null
from crm_analytics.analytics.schemas import (
    ContactRef,
    CountPoint,
    IndustryCount,
    PriorityCount,
    RatePoint,
    RecentActivity,
    RecentCompany,
    RecentContact,
    RecentDeal,
    StageTotals,
    TopCompany,
    UpcomingTask,
)
from crm_analytics.crm.enums import ActivityType, ContactStatus, DealStage, DealStatus, TaskPriority

Fields = dict[str, Any]

PRIORITY_COLORS: dict[TaskPriority, str] = {
    TaskPriority.LOW: "#3b82f6",
    TaskPriority.MEDIUM: "#f59e0b",
    TaskPriority.HIGH: "#ef4444",
}


@dataclass(frozen=True, slots=True)
class DashboardWindow:
    """Every boundary the dashboard uses, derived once from a single ``now``."""

    now: datetime
    today_start: datetime
    tomorrow_start: datetime
    week_start: datetime
    month_start: datetime
    growth_start: datetime

    @classmethod
    def at(cls, now: datetime, bucketer: TimeBucketer, growth_days: int = 30) -> DashboardWindow:
        now = as_utc(now)
        today = bucketer.local_date(now)
        return cls(
            now=now,
            today_start=bucketer.midnight_of(today),
            tomorrow_start=bucketer.midnight_of(today + timedelta(days=1)),
            week_start=bucketer.start_of_week(now),
            month_start=bucketer.start_of_month(now),
            growth_start=bucketer.days_before(now, growth_days),
        )


def _ref(record: dict[str, Any] | None) -> ContactRef | None:
    if record is None:
        return None
    return ContactRef(id=record["id"], first_name=record["first_name"], last_name=record["last_name"])


@dataclass(slots=True)
class DashboardAggregator:
    """Summary panels of the dashboard.

    Each job returns the slice of dashboard fields it owns, so the composer can
    merge them into one object and substitute an empty slice for a failed job.
    """

    repository: AnalyticsRepository
    bucketer: TimeBucketer
    window: DashboardWindow
    recent_limit: int = 5
    top_companies_limit: int = 5

    async def _contacts_by_id(self, ids: list[Any]) -> dict[Any, dict[str, Any]]:
        wanted = sorted({contact_id for contact_id in ids if contact_id is not None}, key=str)
        if not wanted:
            return {}
        rows = await self.repository.find_many(
            Entity.CONTACT, [in_("id", wanted)], fields=("id", "first_name", "last_name")
        )
        return {row["id"]: row for row in rows}

    def _daily(self, value: datetime) -> tuple[str, str]:
        key = self.bucketer.bucket_key(value, Granularity.DAY)
        return key.sort_key, key.label

    # Contacts

    async def contact_totals(self) -> Fields:
        rows = await self.repository.group_by(Entity.CONTACT, "status")
        by_status = {ContactStatus(row.key): row.count for row in rows}
        total = sum(by_status.values())
        customers = by_status.get(ContactStatus.CUSTOMER, 0)
        return {
            "total_contacts": total,
            "total_leads": by_status.get(ContactStatus.LEAD, 0),
            "total_customers": customers,
            "conversion_rate": safe_rate(customers, total),
        }

    async def recent_contacts(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.CONTACT,
            fields=("id", "first_name", "last_name", "email", "status", "created_at"),
            order_by=("-created_at",),
            take=self.recent_limit,
        )
        return {
            "contacts": [
                RecentContact(
                    id=row["id"],
                    first_name=row["first_name"],
                    last_name=row["last_name"],
                    email=row["email"],
                    status=ContactStatus(row["status"]),
                    created_at=as_utc(row["created_at"]),
                )
                for row in rows
            ]
        }

    async def growth(self) -> Fields:
        """Cumulative contact count per local day, seeded with everything older."""
        baseline, rows = await asyncio.gather(
            self.repository.count(Entity.CONTACT, [lt("created_at", self.window.growth_start)]),
            self.repository.find_many(
                Entity.CONTACT,
                [gte("created_at", self.window.growth_start)],
                fields=("created_at",),
                order_by=("created_at",),
            ),
        )
        days = grouped_aggregate(rows, lambda row: self._daily(row["created_at"]))
        running = baseline
        points = []
        for (sort_key, label), totals in sorted(days.items()):
            running += totals.count
            points.append(CountPoint(date=sort_key, label=label, count=running))
        return {"growth_data": points}

    # Tasks

    async def tasks_due_today(self) -> Fields:
        due = await self.repository.count(
            Entity.TASK,
            [
                eq("completed", False),
                gte("due_date", self.window.today_start),
                lt("due_date", self.window.tomorrow_start),
            ],
        )
        return {"tasks_due_today": due}

    async def upcoming_tasks(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.TASK,
            [eq("completed", False)],
            fields=("id", "title", "description", "due_date", "priority", "completed", "contact_id"),
            order_by=("due_date",),
            take=self.recent_limit,
        )
        contacts = await self._contacts_by_id([row["contact_id"] for row in rows])
        return {
            "upcoming_tasks": [
                UpcomingTask(
                    id=row["id"],
                    title=row["title"],
                    description=row["description"],
                    due_date=as_utc(row["due_date"]),
                    priority=TaskPriority(row["priority"]),
                    completed=row["completed"],
                    contact_id=row["contact_id"],
                    contact=_ref(contacts.get(row["contact_id"])),
                )
                for row in rows
            ]
        }

    async def task_totals(self) -> Fields:
        total, completed, overdue = await asyncio.gather(
            self.repository.count(Entity.TASK),
            self.repository.count(Entity.TASK, [eq("completed", True)]),
            self.repository.count(Entity.TASK, [eq("completed", False), lt("due_date", self.window.today_start)]),
        )
        return {
            "total_tasks": total,
            "completed_tasks": completed,
            "overdue_tasks": overdue,
            "task_completion_rate": safe_rate(completed, total),
        }

    async def tasks_by_priority(self) -> Fields:
        rows = await self.repository.group_by(Entity.TASK, "priority")
        by_priority = {TaskPriority(row.key): row.count for row in rows}
        return {
            "tasks_by_priority": [
                PriorityCount(
                    priority=priority.value.capitalize(),
                    count=by_priority.get(priority, 0),
                    color=PRIORITY_COLORS[priority],
                )
                for priority in TaskPriority
            ]
        }

    async def tasks_completion_over_time(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.TASK,
            [gte("created_at", self.window.growth_start)],
            fields=("created_at", "completed"),
            order_by=("created_at",),
        )
        days: dict[tuple[str, str], list[dict[str, Any]]] = {}
        for row in rows:
            days.setdefault(self._daily(row["created_at"]), []).append(row)
        return {
            "tasks_completion_over_time": [
                RatePoint(
                    date=sort_key,
                    label=label,
                    rate=safe_rate(count(tasks, lambda task: bool(task["completed"])), len(tasks)),
                )
                for (sort_key, label), tasks in sorted(days.items())
            ]
        }

    # Deals

    async def deal_totals(self) -> Fields:
        rows = await self.repository.group_by(Entity.DEAL, "status", sum_field="value")
        by_status = {DealStatus(row.key): GroupTotals(count=row.count, sum=row.sum) for row in rows}
        empty = GroupTotals()
        open_, won, lost = (by_status.get(status, empty) for status in (DealStatus.OPEN, DealStatus.WON, DealStatus.LOST))
        return {
            "pipeline_value": money(open_.sum),
            "won_value": money(won.sum),
            "lost_value": money(lost.sum),
            "total_deal_value": money(open_.sum + won.sum + lost.sum),
            "win_rate": safe_rate(won.count, won.count + lost.count),
            "open_deals_count": open_.count,
            "total_won_deals": won.count,
            "total_lost_deals": lost.count,
        }

    async def deals_by_stage(self) -> Fields:
        rows = await self.repository.group_by(Entity.DEAL, "stage", [eq("status", DealStatus.OPEN)], sum_field="value")
        by_stage = {DealStage(row.key): row for row in rows}
        return {
            "deals_by_stage": {
                stage: StageTotals(
                    value=money(by_stage[stage].sum if stage in by_stage else 0),
                    count=by_stage[stage].count if stage in by_stage else 0,
                )
                for stage in DealStage
            }
        }

    async def recent_deals(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.DEAL,
            fields=("id", "name", "value", "stage", "status", "expected_close_date", "created_at", "contact_id"),
            order_by=("-created_at",),
            take=self.recent_limit,
        )
        contacts = await self._contacts_by_id([row["contact_id"] for row in rows])
        return {
            "recent_deals": [
                RecentDeal(
                    id=row["id"],
                    name=row["name"],
                    value=money(row["value"]),
                    stage=DealStage(row["stage"]),
                    status=DealStatus(row["status"]),
                    expected_close_date=as_utc(row["expected_close_date"]),
                    created_at=as_utc(row["created_at"]),
                    contact=_ref(contacts.get(row["contact_id"])),
                )
                for row in rows
            ]
        }

    # Activities

    async def activity_totals(self) -> Fields:
        rows = await self.repository.group_by(Entity.ACTIVITY, "type")
        by_type = {ActivityType(row.key): row.count for row in rows}
        return {
            "total_activities": sum(by_type.values()),
            "call_count": by_type.get(ActivityType.CALL, 0),
            "email_count": by_type.get(ActivityType.EMAIL, 0),
            "meeting_count": by_type.get(ActivityType.MEETING, 0),
            "note_count": by_type.get(ActivityType.NOTE, 0),
        }

    async def activity_periods(self) -> Fields:
        this_week, this_month = await asyncio.gather(
            self.repository.count(Entity.ACTIVITY, [gte("created_at", self.window.week_start)]),
            self.repository.count(Entity.ACTIVITY, [gte("created_at", self.window.month_start)]),
        )
        return {"activities_this_week": this_week, "activities_this_month": this_month}

    async def activities_over_time(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.ACTIVITY,
            [gte("created_at", self.window.growth_start)],
            fields=("created_at",),
            order_by=("created_at",),
        )
        days = grouped_aggregate(rows, lambda row: self._daily(row["created_at"]))
        return {
            "activities_over_time": [
                CountPoint(date=sort_key, label=label, count=totals.count)
                for (sort_key, label), totals in sorted(days.items())
            ]
        }

    async def recent_activities(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.ACTIVITY,
            fields=("id", "type", "subject", "description", "created_at", "contact_id"),
            order_by=("-created_at",),
            take=self.recent_limit,
        )
        contacts = await self._contacts_by_id([row["contact_id"] for row in rows])
        return {
            "recent_activities": [
                RecentActivity(
                    id=row["id"],
                    type=ActivityType(row["type"]),
                    subject=row["subject"],
                    description=row["description"],
                    created_at=as_utc(row["created_at"]),
                    contact=_ref(contacts.get(row["contact_id"])),
                )
                for row in rows
            ]
        }

    # Companies

    async def company_totals(self) -> Fields:
        total_companies, deal_companies, pipeline = await asyncio.gather(
            self.repository.count(Entity.COMPANY),
            self.repository.find_many(Entity.DEAL, [not_null("company_id")], fields=("company_id",)),
            self.repository.aggregate(Entity.DEAL, [eq("status", DealStatus.OPEN)], sum_field="value"),
        )
        return {
            "total_companies": total_companies,
            "companies_with_deals": len({row["company_id"] for row in deal_companies}),
            "average_deal_value": money(safe_divide(pipeline.sum, total_companies)),
        }

    async def top_companies(self) -> Fields:
        deals = await self.repository.find_many(
            Entity.DEAL,
            [not_null("company_id")],
            fields=("company_id", "value"),
            order_by=("created_at",),
        )
        names = await company_names(self.repository, (deal["company_id"] for deal in deals))
        leaders = rank(
            deals,
            key_fn=lambda record: record["company_id"],
            name_fn=lambda record: names.get(record["company_id"]),
            value_fn=field_value("value"),
            n=self.top_companies_limit,
        )
        return {
            "top_companies": [
                TopCompany(company_id=entry.key, company_name=entry.name, total_value=money(entry.value))
                for entry in leaders
            ]
        }

    async def companies_by_industry(self) -> Fields:
        rows = await self.repository.group_by(Entity.COMPANY, "industry", [not_null("industry")])
        return {"companies_by_industry": [IndustryCount(industry=row.key, count=row.count) for row in rows]}

    async def recent_companies(self) -> Fields:
        rows = await self.repository.find_many(
            Entity.COMPANY,
            fields=("id", "name", "industry", "created_at"),
            order_by=("-created_at",),
            take=self.recent_limit,
        )
        return {
            "recent_companies": [
                RecentCompany(
                    id=row["id"],
                    name=row["name"],
                    industry=row["industry"],
                    created_at=as_utc(row["created_at"]),
                )
                for row in rows
            ]
        }

    def jobs(self) -> dict[str, Callable[[], Any]]:
        return {
            "contact_totals": self.contact_totals,
            "recent_contacts": self.recent_contacts,
            "growth": self.growth,
            "tasks_due_today": self.tasks_due_today,
            "upcoming_tasks": self.upcoming_tasks,
            "task_totals": self.task_totals,
            "tasks_by_priority": self.tasks_by_priority,
            "tasks_completion_over_time": self.tasks_completion_over_time,
            "deal_totals": self.deal_totals,
            "deals_by_stage": self.deals_by_stage,
            "recent_deals": self.recent_deals,
            "activity_totals": self.activity_totals,
            "activity_periods": self.activity_periods,
            "activities_over_time": self.activities_over_time,
            "recent_activities": self.recent_activities,
            "company_totals": self.company_totals,
            "top_companies": self.top_companies,
            "companies_by_industry": self.companies_by_industry,
            "recent_companies": self.recent_companies,
        }


def empty_fields(job: str) -> Fields:
    """Zero-valued slice for a dashboard job that failed under partial results."""
    zero = money(0)
    empties: dict[str, Fields] = {
        "contact_totals": {"total_contacts": 0, "total_leads": 0, "total_customers": 0, "conversion_rate": 0.0},
        "recent_contacts": {"contacts": []},
        "growth": {"growth_data": []},
        "tasks_due_today": {"tasks_due_today": 0},
        "upcoming_tasks": {"upcoming_tasks": []},
        "task_totals": {"total_tasks": 0, "completed_tasks": 0, "overdue_tasks": 0, "task_completion_rate": 0.0},
        "tasks_by_priority": {
            "tasks_by_priority": [
                PriorityCount(priority=priority.value.capitalize(), count=0, color=PRIORITY_COLORS[priority])
                for priority in TaskPriority
            ]
        },
        "tasks_completion_over_time": {"tasks_completion_over_time": []},
        "deal_totals": {
            "pipeline_value": zero,
            "won_value": zero,
            "lost_value": zero,
            "total_deal_value": zero,
            "win_rate": 0.0,
            "open_deals_count": 0,
            "total_won_deals": 0,
            "total_lost_deals": 0,
        },
        "deals_by_stage": {"deals_by_stage": {stage: StageTotals(value=zero, count=0) for stage in DealStage}},
        "recent_deals": {"recent_deals": []},
        "activity_totals": {
            "total_activities": 0,
            "call_count": 0,
            "email_count": 0,
            "meeting_count": 0,
            "note_count": 0,
        },
        "activity_periods": {"activities_this_week": 0, "activities_this_month": 0},
        "activities_over_time": {"activities_over_time": []},
        "recent_activities": {"recent_activities": []},
        "company_totals": {"total_companies": 0, "companies_with_deals": 0, "average_deal_value": zero},
        "top_companies": {"top_companies": []},
        "companies_by_industry": {"companies_by_industry": []},
        "recent_companies": {"recent_companies": []},
    }
    return empties[job]
