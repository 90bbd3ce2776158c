"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters/gauges for pipeline runs, marketing content and social posting.
"""

import time

from prometheus_client import Counter, Histogram, Gauge
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Pipeline metrics ─────────────────────────────────────────────────────────

pipeline_runs_total = Counter(
    "pipeline_runs_total",
    "Total pipeline runs",
    ["type", "status"],
)

pipeline_duration_seconds = Histogram(
    "pipeline_duration_seconds",
    "Pipeline run duration in seconds",
    buckets=(5.0, 30.0, 60.0, 300.0, 600.0, 1800.0, 3600.0),
)

pipeline_stage_errors_total = Counter(
    "pipeline_stage_errors_total",
    "Errors recorded by pipeline stage",
    ["stage"],
)

catalog_decisions_total = Counter(
    "catalog_decisions_total",
    "Validation decisions on candidate catalog items",
    ["decision"],
)

# ── Marketing metrics ────────────────────────────────────────────────────────

marketing_content_total = Counter(
    "marketing_content_total",
    "Marketing content items by outcome",
    ["status"],
)

social_posts_total = Counter(
    "social_posts_total",
    "Social channel publish attempts",
    ["channel", "outcome"],
)

social_queue_depth = Gauge(
    "social_queue_depth",
    "Products waiting in the social post queue",
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/marketing/content/42/approve → /api/marketing/content/{id}/approve
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (part.isdigit() or len(part) > 20):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
