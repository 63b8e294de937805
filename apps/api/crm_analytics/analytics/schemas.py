from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from crm_analytics.crm.enums import ActivityType, ContactStatus, DealStage, DealStatus, TaskPriority

DataT = TypeVar("DataT")


class RevenuePoint(BaseModel):
    date: str
    label: str
    revenue: Decimal | str


class CountPoint(BaseModel):
    date: str
    label: str
    count: int


class RatePoint(BaseModel):
    date: str
    label: str
    rate: float


class DealsWonLostRow(BaseModel):
    status: DealStatus
    count: int
    value: Decimal | str


class DealsByStageRow(BaseModel):
    stage: DealStage
    count: int
    value: Decimal | str


class StageDurationRow(BaseModel):
    stage: DealStage
    days: float


class ActivitiesByTypeRow(BaseModel):
    type: ActivityType
    count: int


class ActivityCard(BaseModel):
    id: UUID
    type: ActivityType
    subject: str
    description: str | None
    created_at: datetime
    contact_id: UUID
    contact_name: str | None


class HeatmapDay(BaseModel):
    day: int = Field(ge=0, le=6)
    activities: list[ActivityCard]


class ContactActivityLeader(BaseModel):
    contact_id: UUID
    name: str
    count: int


class CompanyActivityLeader(BaseModel):
    company_id: UUID
    name: str
    count: int


class CompanyValueLeader(BaseModel):
    company_id: UUID
    name: str
    total_value: Decimal | str


class ContactValueLeader(BaseModel):
    contact_id: UUID
    name: str
    total_value: Decimal | str


class FunnelStageRow(BaseModel):
    stage: str
    count: int
    conversion_rate: float
    drop_off_rate: float


class BiggestDealRow(BaseModel):
    deal_id: UUID
    name: str
    value: Decimal | str
    contact_name: str | None


class ReportRead(BaseModel):
    start_date: datetime
    end_date: datetime
    group_by: str
    # Sales performance
    revenue_over_time: list[RevenuePoint]
    deals_won_lost: list[DealsWonLostRow]
    average_deal_size: Decimal | str
    win_rate: float
    # Pipeline
    deals_by_stage: list[DealsByStageRow]
    average_time_in_stage: list[StageDurationRow]
    pipeline_velocity: float
    # Activities
    activities_by_type: list[ActivitiesByTypeRow]
    activities_over_time: list[CountPoint]
    activity_heatmap: list[HeatmapDay]
    top_contacts_by_activity: list[ContactActivityLeader]
    top_companies_by_activity: list[CompanyActivityLeader]
    # Tasks
    task_completion_rate: float
    overdue_tasks_trend: list[CountPoint]
    tasks_completed_over_time: list[CountPoint]
    average_time_to_complete: float
    # Funnel and leaderboards
    conversion_funnel: list[FunnelStageRow]
    top_companies_by_deal_value: list[CompanyValueLeader]
    biggest_deals_won_this_month: list[BiggestDealRow]
    top_contacts_by_deal_value: list[ContactValueLeader]


class ContactRef(BaseModel):
    id: UUID
    first_name: str
    last_name: str


class RecentContact(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    email: str | None
    status: ContactStatus
    created_at: datetime


class RecentActivity(BaseModel):
    id: UUID
    type: ActivityType
    subject: str
    description: str | None
    created_at: datetime
    contact: ContactRef | None


class UpcomingTask(BaseModel):
    id: UUID
    title: str
    description: str | None
    due_date: datetime
    priority: TaskPriority
    completed: bool
    contact_id: UUID | None
    contact: ContactRef | None


class RecentDeal(BaseModel):
    id: UUID
    name: str
    value: Decimal | str
    stage: DealStage
    status: DealStatus
    expected_close_date: datetime
    created_at: datetime
    contact: ContactRef | None


class RecentCompany(BaseModel):
    id: UUID
    name: str
    industry: str | None
    created_at: datetime


class StageTotals(BaseModel):
    value: Decimal | str
    count: int


class PriorityCount(BaseModel):
    priority: str
    count: int
    color: str


class TopCompany(BaseModel):
    company_id: UUID
    company_name: str
    total_value: Decimal | str


class IndustryCount(BaseModel):
    industry: str
    count: int


class DashboardRead(BaseModel):
    contacts: list[RecentContact]
    recent_activities: list[RecentActivity]
    total_contacts: int
    total_leads: int
    total_customers: int
    conversion_rate: float
    growth_data: list[CountPoint]
    tasks_due_today: int
    upcoming_tasks: list[UpcomingTask]
    # Deals
    pipeline_value: Decimal | str
    won_value: Decimal | str
    lost_value: Decimal | str
    win_rate: float
    deals_by_stage: dict[DealStage, StageTotals]
    open_deals_count: int
    total_won_deals: int
    total_lost_deals: int
    recent_deals: list[RecentDeal]
    # Activities
    total_activities: int
    call_count: int
    email_count: int
    meeting_count: int
    note_count: int
    activities_this_week: int
    activities_this_month: int
    activities_over_time: list[CountPoint]
    # Tasks
    total_tasks: int
    overdue_tasks: int
    completed_tasks: int
    tasks_by_priority: list[PriorityCount]
    task_completion_rate: float
    tasks_completion_over_time: list[RatePoint]
    # Companies
    total_companies: int
    companies_with_deals: int
    average_deal_value: Decimal | str
    total_deal_value: Decimal | str
    top_companies: list[TopCompany]
    companies_by_industry: list[IndustryCount]
    recent_companies: list[RecentCompany]


class Envelope(BaseModel, Generic[DataT]):
    data: DataT | None = None
    error: str | None = None
    metric_errors: dict[str, str] = Field(default_factory=dict)
