"""
DSA Onboarding Backend — Company Routes
=========================================

What:  MCA master-data lookup by CIN or LLPIN for company applicants,
       read-back of the stored company record, and the directors step: a
       PAN check per director (addressed by DIN) and step completion.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.rate_limit import general_limiter, kyc_limiter
from dsa_onboarding.middleware.validation import validate
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.common import ErrorResponse, StepCompleteResponse
from dsa_onboarding.schemas.verification import CompanyVerifyRequest, DinParams, MemberPanRequest
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.sandbox_service import get_kyc_provider
from dsa_onboarding.services.verification_service import verification_service

router = APIRouter(
    prefix="/api/company",
    tags=["Company"],
    dependencies=[Depends(general_limiter)],
    responses={401: {"description": "Missing or invalid access token", "model": ErrorResponse}},
)


@router.post(
    "/verify",
    dependencies=[Depends(kyc_limiter)],
    responses={
        400: {"description": "Validation or verification failure", "model": ErrorResponse},
        503: {"description": "KYC provider unavailable", "model": ErrorResponse},
    },
    summary="Verify a company or LLP against MCA records",
)
async def verify_company(
    payload: CompanyVerifyRequest = Depends(validate(CompanyVerifyRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await verification_service.verify_company(db, provider, app, payload.identifier)
    return {"success": True, "message": "Company verified successfully", **result}


@router.get(
    "",
    responses={404: {"description": "Company not verified yet", "model": ErrorResponse}},
    summary="Stored company details",
)
@router.get("/", include_in_schema=False)
async def get_company(app: Application = Depends(current_application)) -> Dict[str, Any]:
    return {"success": True, "company": verification_service.get_company(app)}


# ── Directors ─────────────────────────────────────────────────────────────
@router.get(
    "/directors",
    responses={404: {"description": "Company not verified yet", "model": ErrorResponse}},
    summary="Directors from the MCA record with their KYC state",
)
async def list_directors(app: Application = Depends(current_application)) -> Dict[str, Any]:
    return {"success": True, **verification_service.list_directors(app)}


@router.post(
    "/directors/complete",
    response_model=StepCompleteResponse,
    responses={400: {"description": "Directors pending KYC", "model": ErrorResponse}},
    summary="Mark the directors step complete",
)
async def complete_directors(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await verification_service.complete_directors(db, app)
    return StepCompleteResponse(message="Directors step completed", next_step=next_step)


@router.post(
    "/directors/{din}/verify-pan",
    dependencies=[Depends(kyc_limiter)],
    responses={
        400: {"description": "Validation or verification failure", "model": ErrorResponse},
        404: {"description": "Director not found", "model": ErrorResponse},
        503: {"description": "KYC provider unavailable", "model": ErrorResponse},
    },
    summary="Verify a director's PAN",
)
async def verify_director_pan(
    params: DinParams = Depends(validate(DinParams, "params")),
    payload: MemberPanRequest = Depends(validate(MemberPanRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await verification_service.verify_director_pan(
        db, provider, app, params.din, payload.pan, payload.name, payload.dob
    )
    message = (
        "Director PAN verified successfully"
        if result["verified"]
        else "Director PAN recorded and flagged for manual review"
    )
    return {"success": True, "message": message, **result}
