from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crm_analytics.api.routes import router as api_router
from crm_analytics.core.config import get_settings
from crm_analytics.logging import configure_logging
from crm_analytics.middleware.observability import CorrelationIdMiddleware, RequestLoggingMiddleware
from crm_analytics.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("crm_analytics.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "service.started",
        extra={"environment": settings.app_env, "timezone": settings.analytics_timezone},
    )
    yield
    logger.info("service.stopped")


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("crm-analytics", True)
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
