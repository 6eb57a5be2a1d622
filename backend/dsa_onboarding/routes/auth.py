"""
DSA Onboarding Backend — Auth Routes
======================================

What:  Phone + OTP login and the session lifecycle under /api/auth.
Who:   The frontend login page and its token refresh interceptor.

Guards (in execution order):
    general limiter (router) → tier limiter (route) → body validation → auth
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.middleware.auth import require_auth
from dsa_onboarding.middleware.rate_limit import auth_limiter, general_limiter, otp_limiter
from dsa_onboarding.middleware.validation import validate
from dsa_onboarding.schemas.auth import (
    LoginResponse,
    MeResponse,
    RefreshTokenRequest,
    SendOtpRequest,
    SendOtpResponse,
    TokenPairResponse,
    VerifyOtpRequest,
)
from dsa_onboarding.schemas.common import ErrorResponse, MessageResponse
from dsa_onboarding.services.auth_service import auth_service
from dsa_onboarding.services.token_service import Identity

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Validation failed", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
    },
)


@router.post(
    "/send-otp",
    response_model=SendOtpResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(otp_limiter)],
    summary="Send a login OTP to a phone number",
)
async def send_otp(
    payload: SendOtpRequest = Depends(validate(SendOtpRequest)),
    db: AsyncSession = Depends(get_db_session),
) -> SendOtpResponse:
    result = await auth_service.send_otp(db, payload)
    return SendOtpResponse(**result)


@router.post(
    "/verify-otp",
    response_model=LoginResponse,
    dependencies=[Depends(auth_limiter)],
    responses={401: {"description": "Invalid, expired or locked OTP", "model": ErrorResponse}},
    summary="Verify the OTP and start a session",
)
async def verify_otp(
    payload: VerifyOtpRequest = Depends(validate(VerifyOtpRequest)),
    db: AsyncSession = Depends(get_db_session),
) -> LoginResponse:
    result = await auth_service.verify_otp(db, payload)
    return LoginResponse(**result)


@router.post(
    "/refresh-token",
    response_model=TokenPairResponse,
    dependencies=[Depends(auth_limiter)],
    responses={401: {"description": "Invalid or expired refresh token", "model": ErrorResponse}},
    summary="Rotate the refresh token and issue a new access token",
)
async def refresh_token(
    payload: RefreshTokenRequest = Depends(validate(RefreshTokenRequest)),
    db: AsyncSession = Depends(get_db_session),
) -> TokenPairResponse:
    pair = await auth_service.refresh(db, payload.refresh_token)
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/logout", response_model=MessageResponse, summary="Revoke the refresh token")
async def logout(
    identity: Identity = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await auth_service.logout(db, identity.user_id)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse, summary="Current user and application")
async def me(
    identity: Identity = Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
) -> MeResponse:
    return MeResponse(**await auth_service.me(db, identity.user_id))
