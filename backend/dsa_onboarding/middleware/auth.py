"""
DSA Onboarding Backend — Authentication Guard
===============================================

What:  FastAPI dependencies that resolve the bearer access token into an
       Identity and attach it to `request.state.identity`.
How:   require_auth fails with 401 (NO_TOKEN / INVALID_TOKEN / TOKEN_EXPIRED);
       optional_auth attaches the identity when a valid token is present and
       otherwise lets the request through anonymously.
Who:   Routes (`identity: Identity = Depends(require_auth)`), the rate
       limiter's identity key and the audit recorder (reads request.state).
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dsa_onboarding.exceptions import ApiError, UnauthorizedError
from dsa_onboarding.services.token_service import Identity, decode_access_token

logger = logging.getLogger(__name__)

# auto_error=False: missing/malformed headers are reported with our own codes
bearer_scheme = HTTPBearer(auto_error=False, description="Access token from /api/auth/verify-otp")


def extract_bearer(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(request: Request) -> Identity:
    """Verify the bearer token and attach the identity to the request."""
    token = extract_bearer(request)
    if token is None:
        raise UnauthorizedError("Access denied. No token provided.", code="NO_TOKEN")
    identity = decode_access_token(token)
    request.state.identity = identity
    return identity


def peek_identity(request: Request) -> Optional[Identity]:
    """Identity for a valid token, None otherwise; never raises."""
    existing = getattr(request.state, "identity", None)
    if existing is not None:
        return existing
    token = extract_bearer(request)
    if token is None:
        return None
    try:
        return decode_access_token(token)
    except ApiError:
        return None


async def require_auth(
    request: Request,
    _credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    return authenticate(request)


async def optional_auth(
    request: Request,
    _credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Identity]:
    identity = peek_identity(request)
    if identity is not None:
        request.state.identity = identity
    return identity
