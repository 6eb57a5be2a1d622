"""
DSA Onboarding Backend — Bank Routes
======================================

What:  IFSC lookup, penniless account verification with holder-name matching,
       and the bank step completion.
Who:   The bank details step of the onboarding wizard.
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
from dsa_onboarding.schemas.verification import BankVerifyRequest, IfscParams
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.sandbox_service import get_kyc_provider
from dsa_onboarding.services.verification_service import verification_service

router = APIRouter(
    prefix="/api/bank",
    tags=["Bank"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Validation or verification failure", "model": ErrorResponse},
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
        503: {"description": "KYC provider unavailable", "model": ErrorResponse},
    },
)


@router.get(
    "/verify-ifsc/{ifsc}",
    dependencies=[Depends(kyc_limiter)],
    summary="Look up branch details for an IFSC",
)
async def verify_ifsc(
    params: IfscParams = Depends(validate(IfscParams, "params")),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
) -> Dict[str, Any]:
    branch = await verification_service.verify_ifsc(provider, params.ifsc)
    return {"success": True, "data": branch}


@router.post(
    "/verify",
    dependencies=[Depends(kyc_limiter)],
    summary="Verify the bank account and match the holder name",
)
async def verify_bank(
    payload: BankVerifyRequest = Depends(validate(BankVerifyRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await verification_service.verify_bank(
        db,
        provider,
        app,
        account_number=payload.account_number,
        confirm_account_number=payload.confirm_account_number,
        ifsc=payload.ifsc,
    )
    return {"success": True, **result}


@router.post("/complete", response_model=StepCompleteResponse, summary="Mark the bank step complete")
async def complete_bank(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await verification_service.complete_bank(db, app)
    return StepCompleteResponse(message="Bank step completed", next_step=next_step)
