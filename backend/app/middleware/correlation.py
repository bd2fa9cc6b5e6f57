"""
Correlation ID middleware
=========================
Tags every request with an X-Correlation-ID (taken from the caller or
generated) and exposes it to log records for the lifetime of the request,
so an orchestrator command's vendor calls and activity writes can be traced
back to the HTTP call that started them.
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logger import correlation_id_var

logger = logging.getLogger(__name__)

HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)

        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.info("%s %s (%.0f ms)", request.method, request.url.path, elapsed_ms)
            correlation_id_var.reset(token)

        response.headers[HEADER] = correlation_id
        return response
