"""Request correlation: one request_id per request, echoed back and logged."""
import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from sovrn.core.logging import latency_bucket_ms, request_id_ctx_var

logger = logging.getLogger("sovrn")

REQUEST_ID_HEADER = "x-request-id"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Bind a request_id for the lifetime of a request.

    An incoming X-Request-Id (e.g. from a proxy) is reused; otherwise a UUID
    is generated. The id lands on request.state, in the logging context, and
    on the response header.
    """

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            logger.info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
