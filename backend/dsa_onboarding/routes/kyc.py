"""
DSA Onboarding Backend — KYC Routes
=====================================

What:  Aadhaar offline e-KYC (OTP send + verify), PAN verification and the
       KYC step completion.
How:   Provider-backed routes carry the kyc limiter on top of the router's
       general limiter. The provider is injected with Depends(get_kyc_provider)
       so tests can swap in a fake.
Who:   The identity step of the onboarding wizard.
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
from dsa_onboarding.schemas.verification import (
    AadhaarOtpRequest,
    AadhaarVerifyRequest,
    PanVerifyRequest,
)
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.sandbox_service import get_kyc_provider
from dsa_onboarding.services.verification_service import verification_service

router = APIRouter(
    prefix="/api/kyc",
    tags=["KYC"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Validation or verification failure", "model": ErrorResponse},
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
        503: {"description": "KYC provider unavailable", "model": ErrorResponse},
    },
)


@router.post(
    "/aadhaar/send-otp",
    dependencies=[Depends(kyc_limiter)],
    summary="Send an Aadhaar OTP to the holder's registered mobile",
)
async def send_aadhaar_otp(
    payload: AadhaarOtpRequest = Depends(validate(AadhaarOtpRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
) -> Dict[str, Any]:
    result = await verification_service.send_aadhaar_otp(provider, payload.aadhaar_number)
    return {"success": True, **result}


@router.post(
    "/aadhaar/verify-otp",
    dependencies=[Depends(kyc_limiter)],
    summary="Verify the Aadhaar OTP and store the e-KYC data",
)
async def verify_aadhaar_otp(
    payload: AadhaarVerifyRequest = Depends(validate(AadhaarVerifyRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await verification_service.verify_aadhaar_otp(
        db,
        provider,
        app,
        reference_id=str(payload.reference_id),
        otp=payload.otp,
        aadhaar_number=payload.aadhaar_number,
    )
    return {"success": True, "message": "Aadhaar verified successfully", **result}


@router.post(
    "/pan/verify",
    dependencies=[Depends(kyc_limiter)],
    summary="Verify PAN against the Aadhaar name and date of birth",
)
async def verify_pan(
    payload: PanVerifyRequest = Depends(validate(PanVerifyRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await verification_service.verify_pan(db, provider, app, payload.pan)
    return {"success": True, **result}


@router.post("/complete", response_model=StepCompleteResponse, summary="Mark the KYC step complete")
async def complete_kyc(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await verification_service.complete_kyc(db, app)
    return StepCompleteResponse(message="KYC step completed", next_step=next_step)
