from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from crm_analytics.analytics.errors import AggregationFailedError
from crm_analytics.analytics.repository import AnalyticsRepository, SqlAlchemyAnalyticsRepository
from crm_analytics.analytics.schemas import DashboardRead, Envelope, ReportRead
from crm_analytics.analytics.service import AnalyticsService, analytics_service, parse_report_query
from crm_analytics.context import bind_request_context
from crm_analytics.core.auth import AuthUser, get_current_user
from crm_analytics.core.config import get_settings
from crm_analytics.core.database import get_session_factory
from crm_analytics.platform.security import AuthenticationError, RecordAction, VisibilityFilter, get_visibility_filter

logger = logging.getLogger("crm_analytics.analytics")

reports_router = APIRouter(prefix="/api/reports", tags=["reports"])
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

RepositoryFactory = Callable[[VisibilityFilter], AnalyticsRepository]


def get_analytics_service() -> AnalyticsService:
    return analytics_service


def get_repository_factory(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> RepositoryFactory:
    # One repository per request so its read semaphore lives on the request's loop.
    max_concurrency = get_settings().analytics_max_concurrent_queries

    def _build(visibility: VisibilityFilter) -> AnalyticsRepository:
        return SqlAlchemyAnalyticsRepository(session_factory, visibility, max_concurrency=max_concurrency)

    return _build


def _respond(envelope: Envelope[Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    # metric_errors only appears once a metric has fallen back.
    exclude = None if envelope.metric_errors else {"metric_errors"}
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json", exclude=exclude))


def _error(status_code: int, message: str) -> JSONResponse:
    return _respond(Envelope[object](error=message), status_code)


def _failure_extra(exc: Exception) -> dict[str, object]:
    extra: dict[str, object] = {"error": str(exc)}
    if isinstance(exc, AggregationFailedError):
        extra["metric"] = exc.metric
        extra["error"] = repr(exc.__cause__)
    return extra


@reports_router.get("", response_model=Envelope[ReportRead])
async def get_reports(
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    group_by: str | None = Query(default=None, alias="groupBy"),
    user: AuthUser = Depends(get_current_user),
    repository_factory: RepositoryFactory = Depends(get_repository_factory),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    with bind_request_context(user_id=user.sub):
        try:
            visibility = get_visibility_filter(user, RecordAction.READ)
            query = parse_report_query(
                start_date,
                end_date,
                group_by,
                bucketer=service.bucketer(),
                now=datetime.now(timezone.utc),
                default_days=service.settings.analytics_default_window_days,
            )
            composed = await service.report(repository_factory(visibility), query)
        except AuthenticationError:
            return _error(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
        except Exception as exc:
            logger.exception("analytics.report_failed", extra=_failure_extra(exc))
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch reports data")

    return _respond(Envelope[ReportRead](data=composed.report, metric_errors=composed.metric_errors))


@dashboard_router.get("", response_model=Envelope[DashboardRead])
async def get_dashboard(
    user: AuthUser = Depends(get_current_user),
    repository_factory: RepositoryFactory = Depends(get_repository_factory),
    service: AnalyticsService = Depends(get_analytics_service),
) -> JSONResponse:
    with bind_request_context(user_id=user.sub):
        try:
            visibility = get_visibility_filter(user, RecordAction.READ)
            composed = await service.dashboard(repository_factory(visibility))
        except AuthenticationError:
            return _error(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
        except Exception as exc:
            logger.exception("analytics.dashboard_failed", extra=_failure_extra(exc))
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch dashboard data")

    return _respond(Envelope[DashboardRead](data=composed.dashboard, metric_errors=composed.metric_errors))
