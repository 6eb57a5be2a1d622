"""
DSA Onboarding Backend — Access Log Middleware
================================================

What:  One access-log line per request with status, duration and caller.
How:   Timed with perf_counter around call_next. Level follows the status:
       5xx → ERROR, 4xx → WARNING, otherwise INFO. Request bodies are never
       logged; they carry PII (Aadhaar, PAN, account numbers). A request that
       raises is logged as a 500 before the error propagates.
Who:   Installed in main.create_app(), inside RequestIDMiddleware so the
       correlation id is already set.

Example:
    POST /api/auth/verify-otp 200 42.7ms [3f9a1c2e] user=- ip=127.0.0.1
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from dsa_onboarding.middleware.rate_limit import client_ip
from dsa_onboarding.middleware.request_id import request_id_var

logger = logging.getLogger("dsa_onboarding.access")

QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
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
        try:
            response = await call_next(request)
        except Exception:
            self._log(request, 500, start_time)
            raise
        self._log(request, response.status_code, start_time)
        return response

    @staticmethod
    def _log(request: Request, status: int, start_time: float) -> None:
        path = request.url.path
        duration_ms = (time.perf_counter() - start_time) * 1000
        identity = getattr(request.state, "identity", None)
        user_id = identity.user_id if identity else "-"
        ip = client_ip(request)
        rid = request_id_var.get("")

        logger.log(
            _level_for(status),
            "%s %s %d %.1fms [%s] user=%s ip=%s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": ip,
                "user_id": user_id,
            },
        )
