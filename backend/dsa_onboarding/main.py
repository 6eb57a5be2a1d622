"""
DSA Onboarding Backend — FastAPI Application Factory
======================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   uvicorn (uvicorn dsa_onboarding.main:app) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware (outer → inner):                             │
    │  RequestID → Logging → GZip → Audit → CORS               │
    │                                                          │
    │  Route guards (dependencies, in order):                  │
    │  general limiter → tier limiter → validation → auth      │
    │                                                          │
    │  Routers: health · auth · application · references       │
    │           documents · kyc · bank · company · partners    │
    │           agreement                                      │
    │                                                          │
    │  Exception handlers:                                     │
    │  ApiError → its status │ HTTP 404 → ROUTE_NOT_FOUND      │
    │  RequestValidationError → 400 │ SQLAlchemy / JWT mapped  │
    │  anything else → 500 with X-Request-ID                   │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  validate configuration → create storage directory
    Shutdown: close rate-limit store → close KYC provider client → dispose engine
"""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import jwt
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from dsa_onboarding import __version__
from dsa_onboarding.config import settings
from dsa_onboarding.database import dispose_engine
from dsa_onboarding.exceptions import (
    ApiError,
    BadRequestError,
    MalformedIdError,
    pydantic_details,
    translate_exception,
)
from dsa_onboarding.middleware.audit import AuditMiddleware
from dsa_onboarding.middleware.logging import RequestLoggingMiddleware
from dsa_onboarding.middleware.rate_limit import close_counter_store
from dsa_onboarding.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from dsa_onboarding.routes import (
    agreement,
    application,
    auth,
    bank,
    company,
    documents,
    health,
    kyc,
    partners,
    references,
)
from dsa_onboarding.services.sandbox_service import close_kyc_provider

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

class RequestIdFilter(logging.Filter):
    """Stamps every record with the current correlation id ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("") or "-"
        return True


def setup_logging() -> None:
    """
    Configure logging for the whole application.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    logger.info("=" * 60)
    logger.info("DSA Onboarding Backend %s starting (%s)", __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        raise

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())
    if settings.simulate_otp:
        logger.warning("SIMULATE_OTP is on: OTPs are returned in API responses")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("DSA Onboarding Backend shutting down...")
    await close_counter_store()
    await close_kyc_provider()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(exc: ApiError, original: Exception) -> JSONResponse:
    body = exc.to_body()
    if settings.is_development:
        body["stack"] = "".join(
            traceback.format_exception(type(original), original, original.__traceback__)
        )
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers or None)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Every error leaves the API as `{success: false, error, code, details?}`.

    Handler map:
        ApiError                → its own status / code / headers
        RequestValidationError  → 400 VALIDATION_ERROR
        HTTP 404 (no route)     → 404 ROUTE_NOT_FOUND
        other HTTPException     → its status, code HTTP_ERROR
        MalformedIdError        → 400 INVALID_ID
        SQLAlchemyError         → translate_exception() → 409 DUPLICATE_ERROR or 500
        jwt.PyJWTError          → translate_exception() → 401 TOKEN_EXPIRED / INVALID_TOKEN
        Exception (fallback)    → translate_exception() → usually 500 INTERNAL_ERROR

    The fallback runs outside every middleware, so its response is stamped
    with X-Request-ID here. Database and token errors get their own handlers
    so their responses pass back through logging and audit.

    5xx are logged at ERROR with the traceback; 4xx at WARNING without one.
    Internal details never reach the client outside development.
    """

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500 or not exc.is_operational:
            logger.error(
                "%s %s failed: %s [%s]",
                request.method,
                request.url.path,
                exc.message,
                exc.code,
                exc_info=exc,
            )
        else:
            logger.warning(
                "%s %s -> %d %s: %s",
                request.method,
                request.url.path,
                exc.status_code,
                exc.code,
                exc.message,
            )
        return _error_response(exc, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = pydantic_details(exc)
        error = BadRequestError(
            ", ".join(d["message"] for d in details) or "Validation failed",
            code="VALIDATION_ERROR",
            details=details,
        )
        logger.warning("%s %s -> 400 VALIDATION_ERROR", request.method, request.url.path)
        return _error_response(error, exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error = ApiError(
                f"Route {request.method} {request.url.path} not found",
                status_code=404,
                code="ROUTE_NOT_FOUND",
            )
        else:
            error = ApiError(str(exc.detail), status_code=exc.status_code, code="HTTP_ERROR")
            if exc.headers:
                error.headers.update(exc.headers)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_body(),
            headers=error.headers or None,
        )

    async def handle_translated_error(request: Request, exc: Exception):
        error = translate_exception(exc)
        if error.status_code >= 500:
            logger.error(
                "Unexpected error on %s %s: %s",
                request.method,
                request.url.path,
                str(exc),
                exc_info=exc,
            )
        else:
            logger.warning(
                "%s %s -> %d %s", request.method, request.url.path, error.status_code, error.code
            )
        return _error_response(error, exc)

    app.add_exception_handler(MalformedIdError, handle_translated_error)
    app.add_exception_handler(SQLAlchemyError, handle_translated_error)
    app.add_exception_handler(jwt.PyJWTError, handle_translated_error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        response = await handle_translated_error(request, exc)
        rid = getattr(request.state, "request_id", None)
        if rid:
            response.headers[REQUEST_ID_HEADER] = rid
        return response


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="DSA Onboarding API",
        description=(
            "KYC onboarding backend for Direct Selling Agents: phone OTP login, "
            "Aadhaar / PAN / bank / MCA verification, references and documents."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → GZip → Audit → CORS
    # Audit sits inside GZip so it buffers uncompressed JSON
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
        ],
    )
    if settings.audit_enabled:
        app.add_middleware(AuditMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(application.router)
    app.include_router(references.router)
    app.include_router(documents.router)
    app.include_router(kyc.router)
    app.include_router(bank.router)
    app.include_router(company.router)
    app.include_router(partners.router)
    app.include_router(agreement.router)

    return app


setup_logging()

# uvicorn expects `dsa_onboarding.main:app`
app = create_app()
