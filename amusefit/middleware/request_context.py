from __future__ import annotations
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..observability.logging import get_request_id, request_id_var

log = logging.getLogger("amusefit.request")

# polled by probes and scrapers
PROBE_PREFIXES = ("/health", "/metrics")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, echoes it in the response and logs one record per request."""

    def __init__(self, app, header: str = "X-Request-ID"):
        super().__init__(app)
        self.header = header

    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request, self.header)
        token = request_id_var.set(rid)
        request.state.request_id = rid
        start = time.perf_counter()
        fields = {
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else "unknown",
        }
        try:
            response = await call_next(request)
        except Exception:
            fields["ms"] = int((time.perf_counter() - start) * 1000)
            log.exception("unhandled_error", extra=fields)
            raise
        finally:
            request_id_var.reset(token)

        fields["status"] = response.status_code
        fields["ms"] = int((time.perf_counter() - start) * 1000)
        response.headers[self.header] = rid
        level = logging.DEBUG if request.url.path.startswith(PROBE_PREFIXES) else logging.INFO
        log.log(level, "request", extra={**fields, "request_id": rid})
        return response
