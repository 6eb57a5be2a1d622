"""
DSA Onboarding Backend — KYC / Bank / Company Request Schemas
===============================================================

Responses for these routes are plain dicts assembled by
services.verification_service; only the inputs are modelled here.
"""

from typing import Optional, Union

from pydantic import Field, model_validator
from pydantic_core import PydanticCustomError

from dsa_onboarding.schemas.common import CamelModel
from dsa_onboarding.schemas.validators import AccountNumber, Aadhaar, Cin, Ifsc, Llpin, Otp, Pan, PanDob


class AadhaarOtpRequest(CamelModel):
    aadhaar_number: Aadhaar


class AadhaarVerifyRequest(CamelModel):
    reference_id: Union[str, int]
    otp: Otp
    aadhaar_number: Aadhaar


class PanVerifyRequest(CamelModel):
    pan: Pan


class IfscParams(CamelModel):
    ifsc: Ifsc


class BankVerifyRequest(CamelModel):
    account_number: AccountNumber
    confirm_account_number: AccountNumber
    ifsc: Ifsc


class CompanyVerifyRequest(CamelModel):
    cin: Optional[Cin] = None
    llpin: Optional[Llpin] = None

    @model_validator(mode="after")
    def require_one_identifier(self) -> "CompanyVerifyRequest":
        if not self.cin and not self.llpin:
            raise PydanticCustomError("identifier_missing", "CIN or LLPIN is required.")
        return self

    @property
    def identifier(self) -> str:
        return self.cin or self.llpin


class MemberPanRequest(CamelModel):
    """PAN check for a partner or director: name and DOB as printed on the card."""

    pan: Pan
    name: str = Field(min_length=2, max_length=100)
    dob: PanDob


class DinParams(CamelModel):
    din: str = Field(min_length=1, max_length=20)
