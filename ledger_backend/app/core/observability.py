"""
Request logging with correlation IDs.

Every response carries `X-Correlation-ID` (echoed from the caller or
generated) and `X-Process-Time`. The id is also put on `request.state` so
handlers can log against it. Money-moving requests are logged at INFO;
reads drop to DEBUG to keep the ledger log readable.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("ledger.http")

CORRELATION_HEADER = "X-Correlation-ID"
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
            "ip": request.client.host if request.client else "unknown",
        }
        message = "%s %s -> %s (%.1f ms) [%s]"
        args = (request.method, request.url.path, response.status_code, elapsed_ms, correlation_id)

        if response.status_code >= 500:
            logger.error(message, *args, extra=log_data)
        elif response.status_code >= 400:
            logger.warning(message, *args, extra=log_data)
        elif request.method in WRITE_METHODS:
            logger.info(message, *args, extra=log_data)
        else:
            logger.debug(message, *args, extra=log_data)

        return response
