from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from sqlalchemy import ColumnElement, Select, func, literal, select
from sqlalchemy.orm import Session, sessionmaker

from crm_analytics.analytics.bucketing import TimeWindow
from crm_analytics.core.database import Base
from crm_analytics.crm.models import Activity, Company, Contact, Deal, DealStageHistory, Task
from crm_analytics.platform.security.visibility import VisibilityFilter

T = TypeVar("T")


class Entity(StrEnum):
    CONTACT = "contact"
    COMPANY = "company"
    DEAL = "deal"
    DEAL_STAGE_HISTORY = "deal_stage_history"
    ACTIVITY = "activity"
    TASK = "task"


class Operator(StrEnum):
    EQ = "eq"
    IN = "in"
    GTE = "gte"
    LT = "lt"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


@dataclass(frozen=True, slots=True)
class Condition:
    field: str
    op: Operator
    value: Any = None


Criteria = Sequence[Condition]


def eq(field: str, value: Any) -> Condition:
    return Condition(field, Operator.EQ, value)


def in_(field: str, values: Sequence[Any]) -> Condition:
    return Condition(field, Operator.IN, tuple(values))


def gte(field: str, value: datetime) -> Condition:
    return Condition(field, Operator.GTE, value)


def lt(field: str, value: datetime) -> Condition:
    return Condition(field, Operator.LT, value)


def is_null(field: str) -> Condition:
    return Condition(field, Operator.IS_NULL)


def not_null(field: str) -> Condition:
    return Condition(field, Operator.NOT_NULL)


def within(field: str, window: TimeWindow) -> tuple[Condition, Condition]:
    return gte(field, window.start), lt(field, window.end)


@dataclass(frozen=True, slots=True)
class AggregateResult:
    count: int
    sum: Decimal


@dataclass(frozen=True, slots=True)
class GroupRow:
    key: Any
    count: int
    sum: Decimal


class AnalyticsRepository(Protocol):
    """Read-only data-access facade the aggregations run against.

    Implementations scope every owner-bearing entity to their visibility filter.
    """

    async def count(self, entity: Entity, criteria: Criteria = ()) -> int:
        ...

    async def find_many(
        self,
        entity: Entity,
        criteria: Criteria = (),
        *,
        fields: Sequence[str] | None = None,
        order_by: Sequence[str] = (),
        take: int | None = None,
    ) -> list[dict[str, Any]]:
        ...

    async def aggregate(self, entity: Entity, criteria: Criteria = (), *, sum_field: str | None = None) -> AggregateResult:
        ...

    async def group_by(
        self,
        entity: Entity,
        by: str,
        criteria: Criteria = (),
        *,
        sum_field: str | None = None,
    ) -> list[GroupRow]:
        ...


_MODELS: dict[Entity, type[Base]] = {
    Entity.CONTACT: Contact,
    Entity.COMPANY: Company,
    Entity.DEAL: Deal,
    Entity.DEAL_STAGE_HISTORY: DealStageHistory,
    Entity.ACTIVITY: Activity,
    Entity.TASK: Task,
}

# Companies are shared records; stage history inherits its deal's visibility.
_OWNER_SCOPED = {Entity.CONTACT, Entity.DEAL, Entity.ACTIVITY, Entity.TASK}


class SqlAlchemyAnalyticsRepository:
    """SQLAlchemy-backed facade; each read runs on its own session in a worker thread.

    A semaphore caps how many reads one request keeps in flight so a wide fan-out
    cannot drain the connection pool.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        visibility: VisibilityFilter,
        *,
        max_concurrency: int = 8,
    ) -> None:
        self._session_factory = session_factory
        self.visibility = visibility
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def count(self, entity: Entity, criteria: Criteria = ()) -> int:
        model = _MODELS[entity]
        stmt = self._scoped(select(func.count(model.id)), entity, criteria)
        return await self._run(lambda session: int(session.scalar(stmt) or 0))

    async def find_many(
        self,
        entity: Entity,
        criteria: Criteria = (),
        *,
        fields: Sequence[str] | None = None,
        order_by: Sequence[str] = (),
        take: int | None = None,
    ) -> list[dict[str, Any]]:
        model = _MODELS[entity]
        names = list(fields) if fields is not None else [column.key for column in model.__mapper__.column_attrs]
        columns = [getattr(model, name) for name in names]

        stmt = self._scoped(select(*columns), entity, criteria)
        for item in order_by:
            descending = item.startswith("-")
            column = getattr(model, item.lstrip("-"))
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if take is not None:
            stmt = stmt.limit(take)

        def _load(session: Session) -> list[dict[str, Any]]:
            return [dict(zip(names, row)) for row in session.execute(stmt).all()]

        return await self._run(_load)

    async def aggregate(self, entity: Entity, criteria: Criteria = (), *, sum_field: str | None = None) -> AggregateResult:
        model = _MODELS[entity]
        sum_column = func.coalesce(func.sum(getattr(model, sum_field)), 0) if sum_field else literal(0)
        stmt = self._scoped(select(func.count(model.id), sum_column), entity, criteria)

        def _load(session: Session) -> AggregateResult:
            row = session.execute(stmt).one()
            return AggregateResult(count=int(row[0] or 0), sum=Decimal(str(row[1] or 0)))

        return await self._run(_load)

    async def group_by(
        self,
        entity: Entity,
        by: str,
        criteria: Criteria = (),
        *,
        sum_field: str | None = None,
    ) -> list[GroupRow]:
        model = _MODELS[entity]
        key_column = getattr(model, by)
        sum_column = func.coalesce(func.sum(getattr(model, sum_field)), 0) if sum_field else literal(0)
        stmt = self._scoped(select(key_column, func.count(model.id), sum_column), entity, criteria)
        stmt = stmt.group_by(key_column).order_by(key_column.asc())

        def _load(session: Session) -> list[GroupRow]:
            return [
                GroupRow(key=key, count=int(row_count or 0), sum=Decimal(str(row_sum or 0)))
                for key, row_count, row_sum in session.execute(stmt).all()
            ]

        return await self._run(_load)

    def _scoped(self, stmt: Select[Any], entity: Entity, criteria: Criteria) -> Select[Any]:
        model = _MODELS[entity]
        clauses = [self._clause(model, condition) for condition in criteria]
        if entity in _OWNER_SCOPED and not self.visibility.is_unrestricted:
            clauses.append(model.user_id == self.visibility.owner_id)
        if entity == Entity.DEAL_STAGE_HISTORY and not self.visibility.is_unrestricted:
            clauses.append(
                DealStageHistory.deal_id.in_(select(Deal.id).where(Deal.user_id == self.visibility.owner_id))
            )
        return stmt.where(*clauses) if clauses else stmt

    @staticmethod
    def _clause(model: type[Base], condition: Condition) -> ColumnElement[bool]:
        column = getattr(model, condition.field)
        if condition.op == Operator.EQ:
            return column == condition.value
        if condition.op == Operator.IN:
            return column.in_(condition.value)
        if condition.op == Operator.GTE:
            return column >= condition.value
        if condition.op == Operator.LT:
            return column < condition.value
        if condition.op == Operator.IS_NULL:
            return column.is_(None)
        if condition.op == Operator.NOT_NULL:
            return column.is_not(None)
        raise ValueError(f"Unsupported operator: {condition.op}")

    async def _run(self, work: Callable[[Session], T]) -> T:
        async with self._semaphore:
            return await asyncio.to_thread(self._execute, work)

    def _execute(self, work: Callable[[Session], T]) -> T:
        with self._session_factory() as session:
            return work(session)
