"""
DSA Onboarding Backend — Reference Routes
===========================================

What:  CRUD over the application's personal references (2 to 5 entries)
       and the step completion call.
How:   References are addressed by list position; `index` is validated as a
       non-negative integer before the handler runs.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.rate_limit import general_limiter
from dsa_onboarding.middleware.validation import validate
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.application import (
    ReferenceIndexParams,
    ReferenceInput,
    ReferenceListResponse,
    ReferenceMutationResponse,
)
from dsa_onboarding.schemas.common import ErrorResponse, StepCompleteResponse
from dsa_onboarding.services.application_service import application_service

router = APIRouter(
    prefix="/api/references",
    tags=["References"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Validation or business rule failure", "model": ErrorResponse},
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
    },
)


def _mutation(message: str, references: list) -> ReferenceMutationResponse:
    return ReferenceMutationResponse(message=message, references=references, count=len(references))


@router.get("", response_model=ReferenceListResponse, summary="List references")
@router.get("/", response_model=ReferenceListResponse, include_in_schema=False)
async def list_references(app: Application = Depends(current_application)) -> ReferenceListResponse:
    return ReferenceListResponse(**application_service.list_references(app))


@router.post(
    "/complete",
    response_model=StepCompleteResponse,
    summary="Mark the references step complete",
)
async def complete_references(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await application_service.complete_references(db, app)
    return StepCompleteResponse(message="References step completed", next_step=next_step)


@router.post("", response_model=ReferenceMutationResponse, status_code=201, summary="Add a reference")
@router.post("/", response_model=ReferenceMutationResponse, status_code=201, include_in_schema=False)
async def add_reference(
    payload: ReferenceInput = Depends(validate(ReferenceInput)),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> ReferenceMutationResponse:
    references = await application_service.add_reference(db, app, payload)
    return _mutation("Reference added successfully", references)


@router.put("/{index}", response_model=ReferenceMutationResponse, summary="Replace a reference")
async def update_reference(
    params: ReferenceIndexParams = Depends(validate(ReferenceIndexParams, "params")),
    payload: ReferenceInput = Depends(validate(ReferenceInput)),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> ReferenceMutationResponse:
    references = await application_service.update_reference(db, app, params.index, payload)
    return _mutation("Reference updated successfully", references)


@router.delete("/{index}", response_model=ReferenceMutationResponse, summary="Remove a reference")
async def delete_reference(
    params: ReferenceIndexParams = Depends(validate(ReferenceIndexParams, "params")),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> ReferenceMutationResponse:
    references = await application_service.delete_reference(db, app, params.index)
    return _mutation("Reference removed successfully", references)
