"""
DSA Onboarding Backend — Audit Recorder
=========================================

What:  Persists a redacted record of every non-excluded request/response pair
       for compliance traceability.
How:   AuditMiddleware reads the JSON request body up front and lets the
       request run. JSON responses are buffered and replayed with a Starlette
       BackgroundTask attached; any other response (file downloads) streams
       through as-is with the task attached to it. The task (record_audit)
       runs after the response has been sent, opens its own database session
       and logs any failure, so nothing it does can reach the client. A
       request that raises is recorded as a 500 before the error propagates.
Who:   Installed in main.create_app() when AUDIT_ENABLED is true.

Redaction:
    Any dict key whose lowercase name contains a sensitive marker has its
    value replaced by "[REDACTED]". Nested dicts and dicts inside lists are
    walked. Markers match as substrings, so "companySubType" (contains
    "pan") is redacted too.

Category (first match wins):
    auth → kyc → bank → document → agreement → admin → system
"""

import json
import logging
import time
from typing import Any, Dict, Optional

from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from dsa_onboarding.database import async_session_factory
from dsa_onboarding.middleware.rate_limit import client_ip
from dsa_onboarding.models.audit_log import AuditLog

logger = logging.getLogger("dsa_onboarding.audit")

REDACTED = "[REDACTED]"

SENSITIVE_MARKERS = (
    "password",
    "otp",
    "aadhaar",
    "pan",
    "accountnumber",
    "photo",
    "apikey",
    "secret",
    "token",
)

EXCLUDED_EXACT = frozenset({"/api", "/api/"})
EXCLUDED_PREFIXES = ("/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json")

CATEGORY_RULES = (
    ("auth", ("/auth",)),
    ("kyc", ("/kyc", "/digilocker")),
    ("bank", ("/bank",)),
    ("document", ("/document", "/upload")),
    ("agreement", ("/agreement", "/estamp", "/esign")),
    ("admin", ("/admin",)),
)


def is_excluded(path: str) -> bool:
    return path in EXCLUDED_EXACT or path.startswith(EXCLUDED_PREFIXES)


def categorize(path: str) -> str:
    for category, needles in CATEGORY_RULES:
        if any(needle in path for needle in needles):
            return category
    return "system"


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_MARKERS)


def sanitize(data: Any) -> Any:
    """Redacted deep copy of `data`; the input is never mutated."""
    if isinstance(data, dict):
        return {
            key: REDACTED if is_sensitive(str(key)) else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data


def _parse_json(raw: bytes) -> Optional[Any]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None


async def record_audit(entry: Dict[str, Any]) -> None:
    """Write one audit row. Failures are logged and swallowed."""
    try:
        async with async_session_factory() as session:
            session.add(AuditLog(**entry))
            await session.commit()
    except Exception:
        logger.exception("Failed to write audit log for %s", entry.get("action"))


class AuditMiddleware(BaseHTTPMiddleware):
    """Observes each response and schedules its audit record."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if is_excluded(path) or request.method == "OPTIONS":
            return await call_next(request)

        start_time = time.perf_counter()

        body: Any = None
        if "application/json" in request.headers.get("content-type", ""):
            # Starlette replays the cached body to the downstream app
            body = _parse_json(await request.body())

        try:
            response = await call_next(request)
        except Exception:
            # unhandled; the outermost error handler answers 500 after this
            await record_audit(_build_entry(request, body, start_time, 500, None, "Internal server error"))
            raise

        if "json" not in response.headers.get("content-type", ""):
            # downloads stream through untouched
            response.background = BackgroundTask(
                record_audit, _build_entry(request, body, start_time, response.status_code, None)
            )
            return response

        chunks = []
        async for chunk in response.body_iterator:
            chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
        raw = b"".join(chunks)

        entry = _build_entry(request, body, start_time, response.status_code, _parse_json(raw))
        replay = Response(
            content=raw,
            status_code=response.status_code,
            background=BackgroundTask(record_audit, entry),
        )
        # raw list keeps repeated headers such as Set-Cookie
        replay.raw_headers = list(response.raw_headers)
        return replay


def _build_entry(
    request: Request,
    body: Any,
    start_time: float,
    status_code: int,
    response_body: Any,
    error_message: Optional[str] = None,
) -> Dict[str, Any]:
    path = request.url.path
    identity = getattr(request.state, "identity", None)
    phone = identity.phone if identity else None
    if phone is None and isinstance(body, dict) and isinstance(body.get("phone"), str):
        phone = body["phone"].strip()[:10]

    failed = status_code >= 400
    if failed and error_message is None and isinstance(response_body, dict):
        error_message = response_body.get("error")

    return {
        "user_id": identity.user_id if identity else None,
        "application_id": identity.application_id if identity else None,
        "phone": phone,
        "action": f"{request.method} {path}",
        "category": categorize(path),
        "status": "failure" if failed else "success",
        "method": request.method,
        "path": path[:255],
        "status_code": status_code,
        "ip": client_ip(request),
        "user_agent": (request.headers.get("user-agent") or "")[:512] or None,
        "request_data": sanitize(
            {
                "params": dict(request.path_params),
                "query": dict(request.query_params),
                "body": body if body is not None else {},
            }
        ),
        "response_data": sanitize(response_body),
        "error_message": str(error_message) if error_message is not None else None,
        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
    }
