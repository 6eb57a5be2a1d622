"""
DSA Onboarding Backend — Agreement Routes
===========================================

What:  Agreement readiness for the caller's application and the sign-off
       that closes it.
How:   Signing is recorded directly; there is no e-sign provider. The
       application becomes "completed" on the flush that marks the step.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.rate_limit import general_limiter
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.application import (
    AgreementSignedResponse,
    AgreementStatus,
    AgreementStatusResponse,
)
from dsa_onboarding.schemas.common import ErrorResponse
from dsa_onboarding.services.application_service import application_service

router = APIRouter(
    prefix="/api/agreement",
    tags=["Agreement"],
    dependencies=[Depends(general_limiter)],
    responses={401: {"description": "Missing or invalid access token", "model": ErrorResponse}},
)


@router.get("/status", response_model=AgreementStatusResponse, summary="Agreement readiness")
async def agreement_status(
    app: Application = Depends(current_application),
) -> AgreementStatusResponse:
    return AgreementStatusResponse(
        status=AgreementStatus(**application_service.agreement_status(app))
    )


@router.post(
    "/mark-signed",
    response_model=AgreementSignedResponse,
    responses={400: {"description": "Earlier steps incomplete or already signed", "model": ErrorResponse}},
    summary="Record the signed agreement and complete the application",
)
async def mark_signed(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> AgreementSignedResponse:
    app = await application_service.mark_agreement_signed(db, app)
    return AgreementSignedResponse(
        message="Agreement signed. Your application is complete.",
        status=app.status,
        completed_at=app.completed_at,
    )
