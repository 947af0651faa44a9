from __future__ import annotations

"""Prometheus metrics for the FinRelay FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters and a gauge describing relay outcomes.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Gauge, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "finrelay_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

RELAY_OUTCOMES = Counter(
    "finrelay_relay_outcomes_total",
    "Relays by terminal state",
    labelnames=("origin", "state"),
)

RELAY_DELTAS = Counter(
    "finrelay_relay_deltas_total",
    "Delta frames forwarded to downstream clients",
    labelnames=("origin",),
)

ACTIVE_RELAYS = Gauge(
    "finrelay_active_relays",
    "Relays currently streaming",
    labelnames=("origin",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /ai/chat/history/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    # Keep the first two static segments (e.g. /ai/chat, /admin/ai-models)
    return "/" + "/".join(s for s in segs[:2] if not s.isdigit())


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
