"""
DSA Onboarding Backend — Token Service
========================================

What:  Issues and verifies the credential pair.
How:
    Access credential:  PyJWT HS256, short-lived, stateless. Carries the
                        identity (userId, phone, applicationId); verified by
                        signature and expiry only.
    Refresh credential: opaque random string (secrets.token_urlsafe). Only its
                        sha256 digest and expiry are stored on the user row.
                        Every successful refresh rotates it with a
                        compare-and-swap UPDATE, so a rotated token can never
                        be used again and two concurrent refreshes of the same
                        token cannot both succeed.
Who:   auth_service (login, refresh, logout) and middleware.auth (guard).
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

import jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from dsa_onboarding.config import settings
from dsa_onboarding.database import as_utc, utcnow
from dsa_onboarding.exceptions import UnauthorizedError
from dsa_onboarding.models.user import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class Identity:
    """Resolved caller attached to request.state.identity."""

    user_id: str
    phone: str
    application_id: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hashes_match(value: str, digest: Optional[str]) -> bool:
    if not digest:
        return False
    return hmac.compare_digest(hash_value(value), digest)


# ══════════════════════════════════════════════════════════════════════════
# Access Credential
# ══════════════════════════════════════════════════════════════════════════

def create_access_token(identity: Identity) -> str:
    now = utcnow()
    payload = {
        "sub": identity.user_id,
        "userId": identity.user_id,
        "phone": identity.phone,
        "applicationId": identity.application_id,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=settings.access_token_expire_seconds),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Identity:
    """
    Verify signature and expiry and return the identity.

    Raises:
        UnauthorizedError TOKEN_EXPIRED for an expired token,
        UnauthorizedError INVALID_TOKEN for anything else that fails.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired. Please refresh your token.", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token.", code="INVALID_TOKEN")

    if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("phone"):
        raise UnauthorizedError("Invalid token.", code="INVALID_TOKEN")

    return Identity(
        user_id=payload["sub"],
        phone=payload["phone"],
        application_id=payload.get("applicationId"),
    )


# ══════════════════════════════════════════════════════════════════════════
# Refresh Credential
# ══════════════════════════════════════════════════════════════════════════

def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def identity_for(user: User) -> Identity:
    return Identity(user_id=user.id, phone=user.phone, application_id=user.application_id)


async def issue_tokens(db: AsyncSession, user: User) -> TokenPair:
    """
    Produce a new pair and persist the refresh hash + expiry on the user,
    replacing any previous refresh credential.
    """
    refresh_token = generate_refresh_token()
    user.refresh_token_hash = hash_value(refresh_token)
    user.refresh_token_expires_at = utcnow() + timedelta(seconds=settings.refresh_token_expire_seconds)
    await db.flush()
    return TokenPair(access_token=create_access_token(identity_for(user)), refresh_token=refresh_token)


async def verify_refresh(db: AsyncSession, refresh_token: str) -> User:
    """
    Check a presented refresh token against the stored hash and expiry.

    Never extends the expiry; only rotate_refresh_token() replaces it.
    """
    digest = hash_value(refresh_token)
    result = await db.execute(select(User).where(User.refresh_token_hash == digest))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise UnauthorizedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN")
    if not user.refresh_token_hash or not user.refresh_token_expires_at:
        raise UnauthorizedError("No refresh token found. Please login again.", code="INVALID_REFRESH_TOKEN")
    if not hashes_match(refresh_token, user.refresh_token_hash):
        raise UnauthorizedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN")
    if as_utc(user.refresh_token_expires_at) <= utcnow():
        raise UnauthorizedError("Refresh token expired. Please login again.", code="REFRESH_TOKEN_EXPIRED")
    return user


async def rotate_refresh_token(db: AsyncSession, refresh_token: str) -> Tuple[User, TokenPair]:
    """
    Verify then atomically swap the stored hash for a fresh one.

    The UPDATE only matches while the row still holds the presented hash;
    a concurrent or repeated refresh finds zero rows and is rejected.
    """
    user = await verify_refresh(db, refresh_token)

    new_refresh = generate_refresh_token()
    new_expiry = utcnow() + timedelta(seconds=settings.refresh_token_expire_seconds)
    result = await db.execute(
        update(User)
        .where(User.id == user.id, User.refresh_token_hash == hash_value(refresh_token))
        .values(refresh_token_hash=hash_value(new_refresh), refresh_token_expires_at=new_expiry)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Refresh token for user %s was already rotated", user.id)
        raise UnauthorizedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN")

    set_committed_value(user, "refresh_token_hash", hash_value(new_refresh))
    set_committed_value(user, "refresh_token_expires_at", new_expiry)
    pair = TokenPair(access_token=create_access_token(identity_for(user)), refresh_token=new_refresh)
    return user, pair


async def revoke_refresh_token(db: AsyncSession, user_id: str) -> None:
    """Logout: the stored refresh credential becomes permanently unusable."""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(refresh_token_hash=None, refresh_token_expires_at=None)
        .execution_options(synchronize_session=False)
    )
