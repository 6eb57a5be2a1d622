"""
DSA Onboarding Backend — KYC Provider Interface
=================================================

What:  Abstract contract for the external identity / bank / registry lookups.
How:   Concrete providers (SandboxProvider) implement every coroutine and
       return the provider's decoded JSON envelope unchanged. Business rules
       (name matching, status checks, flagging) live in
       verification_service, never in a provider.
Who:   verification_service, obtained through the get_kyc_provider
       dependency so tests can override it with a mock.

Error contract:
    Transport failures, timeouts and 5xx answers surface as ProviderError
    (503 PROVIDER_UNAVAILABLE) once retries are exhausted; an open circuit
    raises CircuitBreakerOpenError (503 CIRCUIT_OPEN). A 4xx answer is a
    business response and is returned like a 2xx one.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class KycProvider(ABC):
    """External KYC / bank / MCA verification provider."""

    # ── Aadhaar offline e-KYC ─────────────────────────────────────────────
    @abstractmethod
    async def generate_aadhaar_otp(self, aadhaar_number: str) -> Dict[str, Any]:
        """Ask UIDAI to send an OTP; the envelope's data carries reference_id."""

    @abstractmethod
    async def verify_aadhaar_otp(self, reference_id: str, otp: str) -> Dict[str, Any]:
        """Exchange the OTP for the resident's demographic data."""

    # ── PAN ───────────────────────────────────────────────────────────────
    @abstractmethod
    async def verify_pan(self, pan: str, name_as_per_pan: str, date_of_birth: str) -> Dict[str, Any]:
        """
        Validate a PAN and compare it with the supplied name and DD/MM/YYYY
        date of birth. The data carries status, category, remarks,
        name_as_per_pan_match, date_of_birth_match and aadhaar_seeding_status.
        """

    # ── Bank ──────────────────────────────────────────────────────────────
    @abstractmethod
    async def verify_ifsc(self, ifsc: str) -> Dict[str, Any]:
        """Branch record (flat: IFSC, BANK, BRANCH, IMPS, NEFT, ...)."""

    @abstractmethod
    async def verify_bank_account(
        self, ifsc: str, account_number: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        """Penniless (IMPS name lookup) check; data carries account_exists and name_at_bank."""

    # ── Ministry of Corporate Affairs ─────────────────────────────────────
    @abstractmethod
    async def company_master_data(self, identifier: str) -> Dict[str, Any]:
        """Master data and signatories for a CIN or LLPIN."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
