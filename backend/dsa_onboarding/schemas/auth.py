"""
DSA Onboarding Backend — Auth Schemas
=======================================

Request bodies for /api/auth and the login/session response envelopes.
"""

from typing import Dict, Optional

from pydantic import Field

from dsa_onboarding.schemas.application import ApplicationSnapshot
from dsa_onboarding.schemas.common import CamelModel
from dsa_onboarding.schemas.validators import CompanySubType, Email, EntityType, Otp, Phone


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════

class SendOtpRequest(CamelModel):
    phone: Phone
    email: Optional[Email] = None
    entity_type: Optional[EntityType] = None
    company_sub_type: Optional[CompanySubType] = None


class VerifyOtpRequest(CamelModel):
    phone: Phone
    otp: Otp
    entity_type: EntityType
    company_sub_type: Optional[CompanySubType] = None


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════

class SendOtpResponse(CamelModel):
    success: bool = True
    message: str = "OTP sent successfully"
    phone: str
    # Only populated when SIMULATE_OTP is enabled
    otp: Optional[str] = None


class SessionUser(CamelModel):
    id: str
    phone: str
    is_verified: bool


class ProfileUser(SessionUser):
    email: Optional[str] = None
    name: Optional[str] = None


class ApplicationSummary(CamelModel):
    id: str
    entity_type: str
    company_sub_type: Optional[str] = None
    status: str
    completed_steps: Dict[str, bool]


class LoginResponse(CamelModel):
    success: bool = True
    message: str = "Login successful"
    access_token: str
    refresh_token: str
    user: SessionUser
    application: ApplicationSummary


class TokenPairResponse(CamelModel):
    success: bool = True
    access_token: str
    refresh_token: str


class MeResponse(CamelModel):
    success: bool = True
    user: ProfileUser
    application: Optional[ApplicationSnapshot] = None
