"""
DSA Onboarding Backend — Partner Routes
=========================================

What:  Partner CRUD for partnership applications, a PAN check per partner
       and the step completion call.
How:   Partners are addressed by list position like references. The PAN
       check goes through the KYC provider and shares the KYC rate limit.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.rate_limit import general_limiter, kyc_limiter
from dsa_onboarding.middleware.validation import validate
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.application import (
    PartnerIndexParams,
    PartnerInput,
    PartnerListResponse,
    PartnerMutationResponse,
)
from dsa_onboarding.schemas.common import ErrorResponse, StepCompleteResponse
from dsa_onboarding.schemas.verification import MemberPanRequest
from dsa_onboarding.services.partner_service import partner_service
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.sandbox_service import get_kyc_provider

router = APIRouter(
    prefix="/api/partners",
    tags=["Partners"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Validation or business rule failure", "model": ErrorResponse},
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
    },
)


def _mutation(message: str, app: Application) -> PartnerMutationResponse:
    partners = partner_service.summaries(app)
    return PartnerMutationResponse(message=message, partners=partners, count=len(partners))


@router.get("", response_model=PartnerListResponse, summary="List partners")
@router.get("/", response_model=PartnerListResponse, include_in_schema=False)
async def list_partners(app: Application = Depends(current_application)) -> PartnerListResponse:
    return PartnerListResponse(**partner_service.list_partners(app))


@router.post(
    "/complete",
    response_model=StepCompleteResponse,
    summary="Mark the partners step complete",
)
async def complete_partners(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await partner_service.complete_partners(db, app)
    return StepCompleteResponse(message="Partners step completed", next_step=next_step)


@router.post("", response_model=PartnerMutationResponse, status_code=201, summary="Add a partner")
@router.post("/", response_model=PartnerMutationResponse, status_code=201, include_in_schema=False)
async def add_partner(
    payload: PartnerInput = Depends(validate(PartnerInput)),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> PartnerMutationResponse:
    await partner_service.add_partner(db, app, payload)
    return _mutation("Partner added successfully", app)


@router.put("/{index}", response_model=PartnerMutationResponse, summary="Update a partner")
async def update_partner(
    params: PartnerIndexParams = Depends(validate(PartnerIndexParams, "params")),
    payload: PartnerInput = Depends(validate(PartnerInput)),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> PartnerMutationResponse:
    await partner_service.update_partner(db, app, params.index, payload)
    return _mutation("Partner updated successfully", app)


@router.delete("/{index}", response_model=PartnerMutationResponse, summary="Remove a partner")
async def delete_partner(
    params: PartnerIndexParams = Depends(validate(PartnerIndexParams, "params")),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> PartnerMutationResponse:
    await partner_service.delete_partner(db, app, params.index)
    return _mutation("Partner removed successfully", app)


@router.post(
    "/{index}/verify-pan",
    dependencies=[Depends(kyc_limiter)],
    responses={
        404: {"description": "Partner not found", "model": ErrorResponse},
        503: {"description": "KYC provider unavailable", "model": ErrorResponse},
    },
    summary="Verify a partner's PAN",
)
async def verify_partner_pan(
    params: PartnerIndexParams = Depends(validate(PartnerIndexParams, "params")),
    payload: MemberPanRequest = Depends(validate(MemberPanRequest)),
    app: Application = Depends(current_application),
    provider: KycProvider = Depends(get_kyc_provider),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    result = await partner_service.verify_partner_pan(
        db, provider, app, params.index, payload.pan, payload.name, payload.dob
    )
    message = (
        "Partner PAN verified successfully"
        if result["verified"]
        else "Partner PAN recorded and flagged for manual review"
    )
    return {"success": True, "message": message, **result}
