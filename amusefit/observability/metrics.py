from __future__ import annotations
import time

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- HTTP ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

# ---------- verification codes ----------
CODES_ISSUED = Counter(
    "verification_codes_issued_total", "Verification codes issued", ["channel", "purpose"], registry=REGISTRY
)
CODES_VERIFIED = Counter(
    "verification_attempts_total", "Verification attempts by outcome", ["purpose", "reason"], registry=REGISTRY
)
CODES_SWEPT = Counter("verification_codes_swept_total", "Expired codes removed by the sweeper", registry=REGISTRY)

# ---------- delivery ----------
PROVIDER_SENDS = Counter("provider_sends_total", "Provider delivery attempts", ["provider", "outcome"], registry=REGISTRY)
PROVIDER_LATENCY = Histogram(
    "provider_send_duration_seconds",
    "Time spent in one provider send, timeouts included",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 4, 8, 16),
    registry=REGISTRY,
)


async def metrics_endpoint(request: Request) -> Response:
    if not request.app.state.settings.METRICS_ENABLED:
        return Response(status_code=404)
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


class MetricsHTTPMiddleware:
    """Plain ASGI middleware counting responses by method, path and status."""

    def __init__(self, app, skip_paths: tuple[str, ...] = ("/metrics",)):
        self.app = app
        self.skip_paths = frozenset(skip_paths)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["path"] in self.skip_paths:
            await self.app(scope, receive, send)
            return

        method, path = scope["method"], scope["path"]
        started = time.perf_counter()

        async def observe(message):
            if message["type"] == "http.response.start":
                HTTP_REQS.labels(method=method, path=path, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - started)
            await send(message)

        await self.app(scope, receive, observe)
