import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from coachpay.core.logging import request_id_ctx_var, latency_bucket_ms

# Liveness probes hit these every few seconds
QUIET_PATHS = frozenset({"/healthz"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the lifetime of each request and log completion.

    The id comes from the caller's x-request-id header when present, so a
    Stripe delivery retried through a proxy keeps one id across hops.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        path = request.url.path
        level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        logging.getLogger("coachpay").log(
            level,
            "request.complete",
            extra={
                "request_id": rid,
                "path": path,
                "method": request.method,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
        return response
