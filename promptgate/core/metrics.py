"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("promptgate", "Prompt gateway application info")
APP_INFO.info({"version": "1.0.0", "name": "promptgate"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

GATEWAY_REQUESTS = Counter(
    "gateway_requests_total",
    "Gateway invocations by provider and outcome",
    ["provider", "outcome"],
)

CACHE_LOOKUPS = Counter(
    "gateway_cache_lookups_total",
    "Response cache lookups",
    ["result"],  # hit | miss
)

RATE_LIMIT_DENIALS = Counter(
    "gateway_rate_limit_denials_total",
    "Requests rejected by the tenant rate limiter",
)

PROVIDER_LATENCY = Histogram(
    "gateway_provider_latency_seconds",
    "Outbound provider call duration in seconds",
    ["provider"],
    buckets=[0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

IN_FLIGHT = Gauge(
    "gateway_in_flight_requests",
    "Gateway requests currently being processed",
)


# --- Middleware ---


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = request.url.path

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
