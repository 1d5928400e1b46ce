import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from quotagate.core.logging import request_id_ctx_var, latency_bucket_ms


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request_id to each request and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        incoming = request.headers.get(self.header_name)
        rid = incoming or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        logger = logging.getLogger("quotagate")
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "latency_bucket": latency_bucket_ms(duration_ms),
            },
        )
        return response
