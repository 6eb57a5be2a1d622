"""
DSA Onboarding Backend — Meta Routes
======================================

What:  Liveness / readiness check (GET /health) and the API banner (GET /api).
How:   /health runs SELECT 1 against the database and asks the KYC provider
       whether its circuit is closed; either failing reports "degraded".
       Neither route is rate limited or audited.
Who:   Load balancers, container health checks, the frontend on boot.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text

from dsa_onboarding import __version__
from dsa_onboarding.config import settings
from dsa_onboarding.database import engine, utcnow
from dsa_onboarding.middleware.auth import optional_auth
from dsa_onboarding.schemas.common import ApiInfoResponse, HealthResponse
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.sandbox_service import get_kyc_provider
from dsa_onboarding.services.token_service import Identity

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(provider: KycProvider = Depends(get_kyc_provider)) -> HealthResponse:
    db_status = "connected"
    overall = "ok"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "degraded"
        logger.warning("Health check: database unreachable: %s", str(e))

    provider_status = "available"
    if not await provider.health_check():
        provider_status = "unavailable"
        overall = "degraded"
        logger.warning("Health check: KYC provider circuit is open")

    return HealthResponse(
        status=overall,
        timestamp=utcnow(),
        environment=settings.environment,
        version=__version__,
        database=db_status,
        provider=provider_status,
    )


@router.get("/api", response_model=ApiInfoResponse, summary="API information")
async def api_info(identity: Optional[Identity] = Depends(optional_auth)) -> ApiInfoResponse:
    if identity is not None:
        logger.debug("API banner requested by user %s", identity.user_id)
    return ApiInfoResponse(
        name="DSA Onboarding API",
        version=__version__,
        description="KYC onboarding backend for Direct Selling Agents",
        documentation="/docs",
    )
