"""
DSA Onboarding Backend — Request ID Middleware
================================================

What:  Tags every request with a correlation id.
How:   Reuses the caller's X-Request-ID header when present, otherwise a
       short uuid4. The id is stored in a ContextVar (read by the log
       formatter and the error handlers) and on request.state, and is echoed
       back in the X-Request-ID response header.
Who:   Outermost custom middleware in main.create_app().
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# coroutine-local; concurrent requests share the event loop thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
