"""FastAPI middleware for request correlation."""

import time
import uuid
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import set_correlation_id

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Tags every request with a correlation ID and logs its completion."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        # Reuse the caller's ID when one is supplied
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.time() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        duration_ms = round((time.time() - start_time) * 1000, 2)
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Request-Duration-Ms"] = str(duration_ms)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return response
