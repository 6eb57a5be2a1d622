"""
DSA Onboarding Backend — Domain Field Types
=============================================

What:  Reusable Annotated field types for the Indian KYC identifiers
       (phone, OTP, Aadhaar, PAN, IFSC, account number, CIN, LLPIN, GSTIN,
       DD/MM/YYYY date of birth)
       plus entity type, company sub-type and email.
How:   Each type is `Annotated[str, BeforeValidator(normalize), AfterValidator(check)]`.
       Checks raise PydanticCustomError so the human-readable message is the
       error's `msg`; middleware.validation collects all of them in one pass.
Who:   Request schemas in schemas/*.py. OBJECT_ID_RE also backs
       database.ensure_object_id, and normalize_phone keys the OTP limiter.

Coercion:
    Integers are accepted and turned into strings (JSON clients often send
    phone numbers as numbers). PAN and IFSC are upper-cased before matching.
"""

import re
from typing import Annotated, Any, Callable, Iterable, Optional

from pydantic import AfterValidator, BeforeValidator
from pydantic_core import PydanticCustomError

from dsa_onboarding.constants import COMPANY_SUB_TYPES, DOCUMENT_TYPES, ENTITY_TYPES

# ── Patterns ──────────────────────────────────────────────────────────────
PHONE_RE = re.compile(r"^[6-9]\d{9}$")
DIGITS_RE = re.compile(r"^\d+$")
PAN_RE = re.compile(r"^[A-Z]{3}[PCFTGHLABJ][A-Z][0-9]{4}[A-Z]$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
CIN_RE = re.compile(r"^[UL][0-9]{5}[A-Z]{2}[0-9]{4}[A-Z]{3}[0-9]{6}$")
LLPIN_RE = re.compile(r"^[A-Z]{3}-[0-9]{4}$")
GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PAN_DOB_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")

# Messages for missing required fields, keyed by the wire (camelCase) name
REQUIRED_MESSAGES = {
    "phone": "Phone number is required.",
    "otp": "OTP is required.",
    "aadhaarNumber": "Aadhaar number is required.",
    "pan": "PAN is required.",
    "ifsc": "IFSC code is required.",
    "accountNumber": "Account number is required.",
    "confirmAccountNumber": "Please confirm account number.",
    "entityType": "Entity type is required.",
    "refreshToken": "Refresh token is required.",
    "referenceId": "Reference ID is required.",
    "documentType": "Document type is required.",
    "name": "Name is required.",
    "mobile": "Mobile number is required.",
    "address": "Address is required.",
}


def required_message(field: str) -> str:
    return REQUIRED_MESSAGES.get(field, f"{field} is required.")


# ── Normalizers ───────────────────────────────────────────────────────────
def _coerce_str(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def normalize_phone(value: Any) -> Optional[str]:
    """The phone as the Phone field would store it, or None when it is not one."""
    value = _coerce_str(value)
    if isinstance(value, str) and PHONE_RE.match(value):
        return value
    return None


def _coerce_upper(value: Any) -> Any:
    value = _coerce_str(value)
    return value.upper() if isinstance(value, str) else value


def _fail(error_type: str, message: str) -> PydanticCustomError:
    return PydanticCustomError(error_type, message)


# ── Checks ────────────────────────────────────────────────────────────────
def check_phone(value: str) -> str:
    if not PHONE_RE.match(value):
        raise _fail(
            "phone_invalid",
            "Invalid phone number. Must be a valid 10-digit Indian mobile number.",
        )
    return value


def _digits(length: int, length_type: str, length_msg: str, digits_type: str, digits_msg: str) -> Callable[[str], str]:
    def check(value: str) -> str:
        if not DIGITS_RE.match(value):
            raise _fail(digits_type, digits_msg)
        if len(value) != length:
            raise _fail(length_type, length_msg)
        return value

    return check


check_otp = _digits(
    6, "otp_length", "OTP must be 6 digits.", "otp_digits", "OTP must contain only digits."
)
check_aadhaar = _digits(
    12,
    "aadhaar_length",
    "Aadhaar number must be 12 digits.",
    "aadhaar_digits",
    "Aadhaar must contain only digits.",
)


def check_pan(value: str) -> str:
    if len(value) != 10:
        raise _fail("pan_length", "PAN must be 10 characters.")
    if not PAN_RE.match(value):
        raise _fail("pan_format", "Invalid PAN format. Expected format: XXXPX1234X")
    return value


def check_account_number(value: str) -> str:
    if not DIGITS_RE.match(value):
        raise _fail("account_digits", "Account number must contain only digits.")
    if len(value) < 8:
        raise _fail("account_short", "Account number must be at least 8 digits.")
    if len(value) > 40:
        raise _fail("account_long", "Account number cannot exceed 40 digits.")
    return value


def _pattern(pattern: "re.Pattern[str]", error_type: str, message: str) -> Callable[[str], str]:
    def check(value: str) -> str:
        if not pattern.match(value):
            raise _fail(error_type, message)
        return value

    return check


def _one_of(choices: Iterable[str], error_type: str, message: str) -> Callable[[str], str]:
    allowed = frozenset(choices)

    def check(value: str) -> str:
        if value not in allowed:
            raise _fail(error_type, message)
        return value

    return check


check_ifsc = _pattern(IFSC_RE, "ifsc_format", "Invalid IFSC code format.")
check_cin = _pattern(CIN_RE, "cin_format", "Invalid CIN format.")
check_llpin = _pattern(LLPIN_RE, "llpin_format", "Invalid LLPIN format.")
check_gstin = _pattern(GSTIN_RE, "gstin_format", "Invalid GSTIN format.")
check_email = _pattern(EMAIL_RE, "email_format", "Invalid email format.")
check_pan_dob = _pattern(PAN_DOB_RE, "dob_format", "Date of birth must be in DD/MM/YYYY format.")
check_entity_type = _one_of(ENTITY_TYPES, "entity_type", "Invalid entity type.")
check_company_sub_type = _one_of(COMPANY_SUB_TYPES, "company_sub_type", "Invalid company sub-type.")
check_document_type = _one_of(DOCUMENT_TYPES, "document_type", "Invalid document type.")


# ── Field Types ───────────────────────────────────────────────────────────
Phone = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_phone)]
Otp = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_otp)]
Aadhaar = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_aadhaar)]
Pan = Annotated[str, BeforeValidator(_coerce_upper), AfterValidator(check_pan)]
Ifsc = Annotated[str, BeforeValidator(_coerce_upper), AfterValidator(check_ifsc)]
AccountNumber = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_account_number)]
EntityType = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_entity_type)]
CompanySubType = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_company_sub_type)]
DocumentType = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_document_type)]
Cin = Annotated[str, BeforeValidator(_coerce_upper), AfterValidator(check_cin)]
Llpin = Annotated[str, BeforeValidator(_coerce_upper), AfterValidator(check_llpin)]
Gstin = Annotated[str, BeforeValidator(_coerce_upper), AfterValidator(check_gstin)]
Email = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_email)]
PanDob = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(check_pan_dob)]
