"""
DSA Onboarding Backend — Login OTP
====================================

What:  Generates and checks the one-time passcode used for phone login.
How:   The OTP is drawn with `secrets`, stored as a sha256 digest with an
       expiry, and the failed-attempt counter is reset on every new OTP.
       Wrong guesses and the single-use consume are conditional UPDATEs,
       so parallel guesses cannot share one attempt.

Verification outcomes:
    VALID    match; the OTP is cleared (single use)
    INVALID  mismatch below the threshold; attempts += 1
    LOCKED   attempts reached OTP_MAX_ATTEMPTS; the OTP is cleared and
             every further attempt is LOCKED until a new OTP is requested
    EXPIRED  past otp_expires_at; the OTP is cleared
    MISSING  no OTP outstanding
"""

import enum
import secrets
import string
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from dsa_onboarding.config import settings
from dsa_onboarding.database import as_utc, utcnow
from dsa_onboarding.models.user import User
from dsa_onboarding.services.token_service import hash_value, hashes_match


class OtpOutcome(str, enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    LOCKED = "locked"
    EXPIRED = "expired"
    MISSING = "missing"


def generate_otp(length: int = 6) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def set_otp(user: User) -> str:
    """Store a fresh OTP on the user and return the plain value."""
    otp = generate_otp(settings.otp_length)
    user.otp_hash = hash_value(otp)
    user.otp_expires_at = utcnow() + timedelta(seconds=settings.otp_expiry_seconds)
    user.otp_attempts = 0
    return otp


def clear_otp(user: User) -> None:
    user.otp_hash = None
    user.otp_expires_at = None


def _sync_otp_state(user: User, attempts: int, otp_hash, expires_at) -> None:
    set_committed_value(user, "otp_attempts", attempts)
    set_committed_value(user, "otp_hash", otp_hash)
    set_committed_value(user, "otp_expires_at", expires_at)


async def _current_attempts(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(select(User.otp_attempts).where(User.id == user_id))
    return result.scalar_one()


async def check_otp(db: AsyncSession, user: User, otp: str) -> OtpOutcome:
    """
    Compare `otp` with the stored digest and update the attempt state.

    Both outcomes that touch the counter are decided by the database:
    a match consumes the OTP only while it is still stored and under the
    attempt limit; a mismatch increments the counter in place.
    """
    if user.otp_attempts >= settings.otp_max_attempts:
        clear_otp(user)
        return OtpOutcome.LOCKED

    if not user.otp_hash or not user.otp_expires_at:
        return OtpOutcome.MISSING

    if as_utc(user.otp_expires_at) <= utcnow():
        clear_otp(user)
        return OtpOutcome.EXPIRED

    stored_hash = user.otp_hash

    if hashes_match(otp, stored_hash):
        consumed = await db.execute(
            update(User)
            .where(
                User.id == user.id,
                User.otp_hash == stored_hash,
                User.otp_attempts < settings.otp_max_attempts,
            )
            .values(otp_hash=None, otp_expires_at=None, otp_attempts=0)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount == 1:
            _sync_otp_state(user, 0, None, None)
            return OtpOutcome.VALID

        attempts = await _current_attempts(db, user.id)
        _sync_otp_state(user, attempts, None, None)
        if attempts >= settings.otp_max_attempts:
            return OtpOutcome.LOCKED
        return OtpOutcome.MISSING

    await db.execute(
        update(User)
        .where(User.id == user.id, User.otp_hash == stored_hash)
        .values(otp_attempts=User.otp_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    attempts = await _current_attempts(db, user.id)

    if attempts >= settings.otp_max_attempts:
        await db.execute(
            update(User)
            .where(User.id == user.id)
            .values(otp_hash=None, otp_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        _sync_otp_state(user, attempts, None, None)
        return OtpOutcome.LOCKED

    set_committed_value(user, "otp_attempts", attempts)
    return OtpOutcome.INVALID
