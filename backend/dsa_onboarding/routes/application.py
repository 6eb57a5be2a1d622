"""
DSA Onboarding Backend — Application Routes
=============================================

What:  The caller's onboarding application: snapshot, step list, progress
       and the entity-type switch.
Who:   The onboarding wizard shell (sidebar, progress bar, entity picker).
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.rate_limit import general_limiter
from dsa_onboarding.middleware.validation import validate
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.application import (
    ApplicationResponse,
    EntityTypeResponse,
    EntityTypeUpdate,
    StatusResponse,
    StepsResponse,
)
from dsa_onboarding.schemas.common import ErrorResponse
from dsa_onboarding.services.application_service import application_service, application_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/application",
    tags=["Application"],
    dependencies=[Depends(general_limiter)],
    responses={
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
        404: {"description": "No application for this login", "model": ErrorResponse},
    },
)


@router.get("", response_model=ApplicationResponse, summary="Full application snapshot")
@router.get("/", response_model=ApplicationResponse, include_in_schema=False)
async def get_application(app: Application = Depends(current_application)) -> ApplicationResponse:
    return ApplicationResponse(application=application_snapshot(app))


@router.get("/steps", response_model=StepsResponse, summary="Ordered steps with progress flags")
async def get_steps(app: Application = Depends(current_application)) -> StepsResponse:
    return StepsResponse(**application_service.steps(app))


@router.get("/status", response_model=StatusResponse, summary="Lifecycle status and progress")
async def get_status(app: Application = Depends(current_application)) -> StatusResponse:
    return StatusResponse(**application_service.status(app))


@router.patch(
    "/entity-type",
    response_model=EntityTypeResponse,
    responses={400: {"description": "Steps already completed", "model": ErrorResponse}},
    summary="Change the entity type before any step is completed",
)
async def change_entity_type(
    payload: EntityTypeUpdate = Depends(validate(EntityTypeUpdate)),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> EntityTypeResponse:
    app = await application_service.change_entity_type(db, app, payload)
    return EntityTypeResponse(
        entity_type=app.entity_type,
        company_sub_type=app.company_sub_type,
        next_step=app.next_step(),
    )
