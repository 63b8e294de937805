from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request
from starlette.routing import Match


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

analytics_aggregation_duration_seconds = Histogram(
    "analytics_aggregation_duration_seconds",
    "Analytics sub-aggregation duration in seconds",
    ["metric"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

analytics_aggregation_failures_total = Counter(
    "analytics_aggregation_failures_total",
    "Total failed analytics sub-aggregations by metric",
    ["metric"],
)

UNMATCHED_PATH = "unmatched"


def resolve_http_path_label(request: Request) -> str:
    """Route template of the request, so label cardinality stays bounded."""
    route = request.scope.get("route")
    if route is None:
        router = request.scope.get("router")
        for candidate in getattr(router, "routes", ()):
            match, _ = candidate.matches(request.scope)
            if match == Match.FULL:
                route = candidate
                break
    path = getattr(route, "path_format", None) or getattr(route, "path", None)
    return path if isinstance(path, str) and path else UNMATCHED_PATH


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_aggregation(metric: str, duration: float) -> None:
    analytics_aggregation_duration_seconds.labels(metric=metric).observe(duration)


def observe_aggregation_failure(metric: str) -> None:
    analytics_aggregation_failures_total.labels(metric=metric).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
