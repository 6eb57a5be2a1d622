"""
DSA Onboarding Backend — Auth Service
=======================================

What:  Phone + OTP login, token refresh, logout and the session profile.
How:   Composes otp_service and token_service over the users/applications
       tables. Stateless: every method receives the request's AsyncSession.
Who:   routes/auth.py.

Login Flow:
    send-otp   → find-or-create user → store hashed OTP → (echo OTP in simulate mode)
    verify-otp → check OTP (attempt counter committed on failure)
               → reuse open application or start one
               → attach application, mark verified → issue token pair
    refresh    → compare-and-swap rotation of the refresh credential
    logout     → clear the refresh credential
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.config import settings
from dsa_onboarding.constants import TERMINAL_STATUSES
from dsa_onboarding.database import ensure_object_id, utcnow
from dsa_onboarding.exceptions import UnauthorizedError
from dsa_onboarding.models.application import Application
from dsa_onboarding.models.user import User
from dsa_onboarding.schemas.auth import SendOtpRequest, VerifyOtpRequest
from dsa_onboarding.services import otp_service, token_service
from dsa_onboarding.services.application_service import application_snapshot
from dsa_onboarding.services.otp_service import OtpOutcome
from dsa_onboarding.services.token_service import TokenPair

logger = logging.getLogger(__name__)

OTP_FAILURES = {
    OtpOutcome.LOCKED: ("Too many failed attempts. Please request a new OTP.", "OTP_LOCKED"),
    OtpOutcome.EXPIRED: ("OTP expired. Please request a new OTP.", "OTP_EXPIRED"),
    OtpOutcome.MISSING: ("No OTP found. Please request a new OTP.", "INVALID_OTP"),
    OtpOutcome.INVALID: ("Invalid OTP. Please try again.", "INVALID_OTP"),
}


def application_summary(app: Application) -> Dict[str, Any]:
    return {
        "id": app.id,
        "entity_type": app.entity_type,
        "company_sub_type": app.company_sub_type,
        "status": app.status,
        "completed_steps": dict(app.completed_steps or {}),
    }


class AuthService:
    """Business logic for /api/auth."""

    async def get_user_by_phone(self, db: AsyncSession, phone: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.phone == phone))
        return result.scalar_one_or_none()

    async def get_user(self, db: AsyncSession, user_id: str) -> User:
        user = await db.get(User, ensure_object_id(user_id))
        if user is None or not user.is_active:
            raise UnauthorizedError("User not found or inactive.", code="INVALID_TOKEN")
        return user

    async def find_open_application(self, db: AsyncSession, phone: str) -> Optional[Application]:
        result = await db.execute(
            select(Application)
            .where(Application.phone == phone, Application.status.not_in(TERMINAL_STATUSES))
            .order_by(Application.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def open_application(
        self,
        db: AsyncSession,
        phone: str,
        entity_type: str,
        company_sub_type: Optional[str],
        email: Optional[str],
    ) -> Application:
        """
        The phone's non-terminal application, created when none exists.

        The insert runs in a savepoint; if a concurrent login created the
        row first, the unique index rejects ours and the winner is re-read.
        """
        existing = await self.find_open_application(db, phone)
        if existing is not None:
            return existing

        app = Application.start(
            phone=phone,
            entity_type=entity_type,
            company_sub_type=company_sub_type,
            email=email,
        )
        try:
            async with db.begin_nested():
                db.add(app)
        except IntegrityError:
            logger.info("Concurrent application create for %s; reusing existing", phone)
            existing = await self.find_open_application(db, phone)
            if existing is None:
                raise
            return existing

        logger.info("Application %s started for %s (%s)", app.id, phone, entity_type)
        return app

    # ══════════════════════════════════════════════════════════════════════
    # Operations
    # ══════════════════════════════════════════════════════════════════════

    async def send_otp(self, db: AsyncSession, payload: SendOtpRequest) -> Dict[str, Any]:
        user = await self.get_user_by_phone(db, payload.phone)
        if user is None:
            user = User(phone=payload.phone, email=payload.email)
            db.add(user)
            logger.info("New user registered: %s", payload.phone)
        elif payload.email:
            user.email = payload.email

        otp = otp_service.set_otp(user)
        await db.flush()

        if settings.is_development or settings.simulate_otp:
            logger.info("OTP for %s: %s", payload.phone, otp)

        response: Dict[str, Any] = {"phone": payload.phone}
        if settings.simulate_otp:
            response["otp"] = otp
        return response

    async def verify_otp(self, db: AsyncSession, payload: VerifyOtpRequest) -> Dict[str, Any]:
        user = await self.get_user_by_phone(db, payload.phone)
        if user is None or not user.is_active:
            raise UnauthorizedError("Invalid phone number or OTP", code="INVALID_OTP")

        outcome = await otp_service.check_otp(db, user, payload.otp)
        if outcome is not OtpOutcome.VALID:
            # attempt counter and cleared OTP must survive the error rollback
            await db.commit()
            message, code = OTP_FAILURES[outcome]
            logger.warning(
                "OTP verification failed for %s: %s (attempts=%d)",
                payload.phone,
                outcome.value,
                user.otp_attempts,
            )
            raise UnauthorizedError(message, code=code)

        app = await self.open_application(
            db,
            phone=payload.phone,
            entity_type=payload.entity_type,
            company_sub_type=payload.company_sub_type,
            email=user.email,
        )
        if user.email and app.email != user.email:
            app.email = user.email

        user.application_id = app.id
        user.is_verified = True
        user.last_login_at = utcnow()
        await db.flush()

        pair = await token_service.issue_tokens(db, user)
        logger.info("User %s logged in (application=%s)", user.id, app.id)

        return {
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "user": {"id": user.id, "phone": user.phone, "is_verified": user.is_verified},
            "application": application_summary(app),
        }

    async def refresh(self, db: AsyncSession, refresh_token: str) -> TokenPair:
        user, pair = await token_service.rotate_refresh_token(db, refresh_token)
        logger.info("Tokens refreshed for user %s", user.id)
        return pair

    async def logout(self, db: AsyncSession, user_id: str) -> None:
        await token_service.revoke_refresh_token(db, user_id)
        logger.info("User %s logged out", user_id)

    async def me(self, db: AsyncSession, user_id: str) -> Dict[str, Any]:
        user = await self.get_user(db, user_id)
        app = await db.get(Application, user.application_id) if user.application_id else None
        return {
            "user": {
                "id": user.id,
                "phone": user.phone,
                "email": user.email,
                "name": user.name,
                "is_verified": user.is_verified,
            },
            "application": application_snapshot(app) if app else None,
        }


auth_service = AuthService()
