"""
Logging setup and request tracing.

Every response carries an X-Correlation-ID (taken from the request when the
client sends one) and is logged with its status and latency.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ridepool.app.core.config import settings

logger = logging.getLogger("ridepool.http")


def configure_logging() -> None:
    """Attach a stream handler to the "ridepool" logger once at startup."""
    root = logging.getLogger("ridepool")
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s"
    ))
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level, "%s %s -> %s in %sms [cid=%s ip=%s]",
            request.method, request.url.path, response.status_code, duration_ms, correlation_id,
            request.client.host if request.client else "unknown"
        )
        return response
