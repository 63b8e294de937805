from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crm_analytics.analytics.api import dashboard_router, reports_router
from crm_analytics.core.auth import AuthUser, get_current_user
from crm_analytics.core.config import get_settings
from crm_analytics.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(reports_router)
router.include_router(dashboard_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
        "timezone": settings.analytics_timezone,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not {"system.metrics.read", "admin"} & set(user.roles):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
