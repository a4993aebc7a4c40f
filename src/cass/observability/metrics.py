"""Prometheus metrics for the Cass processing service.

Processing outcomes are counted per workflow; the HTTP middleware records
request latency per method/path/status.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Gauge, Histogram
from starlette.requests import Request
from starlette.responses import Response

REQUEST_LATENCY = Histogram(
    "cass_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

PROCESSING_REQUESTS = Counter(
    "cass_processing_requests_total",
    "Processing requests by workflow and outcome",
    labelnames=("workflow", "outcome"),
)

PROCESSING_DURATION = Histogram(
    "cass_processing_duration_seconds",
    "Wall time from trigger to terminal event",
    labelnames=("workflow",),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0),
)

DROPPED_TRIGGERS = Counter(
    "cass_processing_dropped_total",
    "Triggers dropped because a request was already in flight",
)

PROCESSING_BUSY = Gauge(
    "cass_processing_busy",
    "1 while a processing request is in flight",
)


def observe_processing(workflow: str, outcome: str, elapsed: float) -> None:
    PROCESSING_REQUESTS.labels(workflow=workflow, outcome=outcome).inc()
    PROCESSING_DURATION.labels(workflow=workflow).observe(elapsed)


def sanitize_path(path: str) -> str:
    """Reduce a request path to its top-level segment to keep label cardinality low."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # The metrics endpoint and the long-lived event stream are not observed
        if request.url.path.startswith("/metrics") or request.url.path.endswith("/events"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
