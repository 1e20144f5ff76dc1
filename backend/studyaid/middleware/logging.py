"""
StudyAid Backend — Request Logging Middleware
===============================================

What:  One access-log line per HTTP request with status and duration.
Why:   Generation latency varies from milliseconds (cache hit) to tens of
       seconds (provider cascade); the access log is where that shows up.
How:   Times the downstream call and logs on the "studyaid.access" logger at a
       level chosen by status class: 5xx ERROR, 4xx WARNING, otherwise INFO.

Logged fields:
    method, path, status, duration_ms, request_id, client_ip
    Request bodies are never logged: they carry student notes.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from studyaid.middleware.request_id import request_id_var

logger = logging.getLogger("studyaid.access")

# Polled by load balancers every few seconds
QUIET_PATHS = {"/health"}


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = request_id_var.get("")
        status = response.status_code
        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
