"""
DSA Onboarding Backend — Sandbox KYC Provider
===============================================

What:  KycProvider implementation for the sandbox.co.in verification APIs
       (Aadhaar OKYC, PAN, bank, MCA).
How:   httpx.AsyncClient with a lazily obtained access token, tenacity
       retries for transient failures and a circuit breaker in front of
       every call.
Who:   A single instance per process, handed to routes through the
       get_kyc_provider() dependency.

Authentication:
    POST /authenticate with x-api-key / x-api-secret / x-api-version.
    The token is cached for 23 hours and renewed 5 minutes early; a 403
    "Insufficient privilege" answer drops the cached token and replays the
    request once with a fresh one.

Resilience:
    transport error / timeout / 5xx
        → tenacity retry (exponential backoff + jitter)
        → retries exhausted → circuit breaker failure + ProviderError (503)
    circuit OPEN → CircuitBreakerOpenError (503) without touching the network
    4xx → returned to the caller as a business answer
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from dsa_onboarding.config import settings
from dsa_onboarding.exceptions import CircuitBreakerOpenError, ProviderError
from dsa_onboarding.services.provider_base import KycProvider

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 23 * 3600
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60
CONSENT = "Y"
REASON = "KYC Verification for DSA Onboarding"


class TransientProviderError(Exception):
    """A provider answer worth retrying (5xx, non-JSON body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


TRANSIENT_ERRORS = (httpx.TransportError, TransientProviderError)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → failure_count reaches threshold → OPEN
    OPEN   → recovery_timeout elapsed       → HALF_OPEN (one trial call)
    HALF_OPEN → success → CLOSED, failure → OPEN

    While the trial call is in flight every other caller is rejected. A trial
    that never reports back is abandoned after another recovery_timeout.

    Process-local; each uvicorn worker keeps its own state.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self.trial_started: Optional[float] = None

    def can_execute(self) -> bool:
        """True when a call may proceed; raises CircuitBreakerOpenError otherwise."""
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                self.trial_started = time.time()
                return True
            raise CircuitBreakerOpenError(recovery_time=max(1, int(self.recovery_timeout - elapsed)))

        now = time.time()
        if self.trial_started is not None and now - self.trial_started < self.recovery_timeout:
            raise CircuitBreakerOpenError(recovery_time=max(1, int(self.recovery_timeout - (now - self.trial_started))))
        self.trial_started = now
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (provider recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None
        self.trial_started = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        self.trial_started = None

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (trial call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Sandbox Provider
# ══════════════════════════════════════════════════════════════════════════

class SandboxProvider(KycProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.sandbox_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.sandbox_api_key
        self.api_secret = api_secret if api_secret is not None else settings.sandbox_api_secret
        self.api_version = settings.sandbox_api_version
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "SandboxProvider initialized for %s, circuit_breaker(threshold=%d, recovery=%ds)",
            self.base_url,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(settings.provider_timeout),
                transport=self._transport,
            )
        return self._client

    # ── Access token ──────────────────────────────────────────────────────
    def _token_valid(self) -> bool:
        return bool(self._access_token) and time.time() < (
            self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS
        )

    async def authenticate(self) -> None:
        response = await self.client.post(
            "/authenticate",
            headers={
                "x-api-key": self.api_key,
                "x-api-secret": self.api_secret,
                "x-api-version": self.api_version,
            },
        )
        if response.status_code >= 500:
            raise TransientProviderError("Authentication endpoint unavailable", response.status_code)

        token = None
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict):
            token = payload.get("access_token") or (payload.get("data") or {}).get("access_token")

        if not token:
            logger.error("Sandbox authentication failed: HTTP %d", response.status_code)
            raise TransientProviderError("No access token in authentication response", response.status_code)

        self._access_token = token
        self._token_expires_at = time.time() + TOKEN_TTL_SECONDS
        logger.info("Sandbox authentication successful")

    async def _ensure_token(self) -> str:
        if not self._token_valid():
            async with self._token_lock:
                if not self._token_valid():
                    await self.authenticate()
        return self._access_token  # type: ignore[return-value]

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": token,
            "x-api-key": self.api_key,
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
        }

    # ── Transport ─────────────────────────────────────────────────────────
    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = await self._ensure_token()
        response = await self.client.request(
            method, path, json=json, params=params, headers=self._headers(token)
        )

        if response.status_code == 403 and "insufficient privilege" in response.text.lower():
            logger.warning("Sandbox token rejected, re-authenticating")
            self._access_token = None
            token = await self._ensure_token()
            response = await self.client.request(
                method, path, json=json, params=params, headers=self._headers(token)
            )

        if response.status_code >= 500:
            raise TransientProviderError(
                f"Provider returned HTTP {response.status_code}", response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            raise TransientProviderError("Provider returned a non-JSON body", response.status_code)

        if response.status_code >= 400:
            logger.warning("Provider answered %s %s with HTTP %d", method, path, response.status_code)
        return body if isinstance(body, dict) else {"data": body}

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            multiplier=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_with_retry(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        return await self._send(method, path, **kwargs)

    async def call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Circuit breaker → retried request → decoded JSON envelope."""
        call_id = uuid.uuid4().hex[:8]
        self.circuit_breaker.can_execute()

        start_time = time.perf_counter()
        try:
            body = await self._send_with_retry(method, path, **kwargs)
        except TRANSIENT_ERRORS as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Provider call %s %s failed after %d attempts: %s",
                call_id,
                method,
                path,
                settings.retry_max_attempts,
                str(e),
            )
            raise ProviderError(
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"call_id": call_id, "path": path, "error_type": type(e).__name__},
            )

        self.circuit_breaker.record_success()
        logger.info(
            "[%s] Provider call %s %s completed in %.0fms",
            call_id,
            method,
            path,
            (time.perf_counter() - start_time) * 1000,
        )
        return body

    # ── KycProvider ───────────────────────────────────────────────────────
    async def generate_aadhaar_otp(self, aadhaar_number: str) -> Dict[str, Any]:
        logger.info("Generating Aadhaar OTP for XXXX%s", aadhaar_number[-4:])
        return await self.call(
            "POST",
            "/kyc/aadhaar/okyc/otp",
            json={
                "@entity": "in.co.sandbox.kyc.aadhaar.okyc.otp.request",
                "aadhaar_number": aadhaar_number,
                "consent": CONSENT,
                "reason": REASON,
            },
        )

    async def verify_aadhaar_otp(self, reference_id: str, otp: str) -> Dict[str, Any]:
        return await self.call(
            "POST",
            "/kyc/aadhaar/okyc/otp/verify",
            json={
                "@entity": "in.co.sandbox.kyc.aadhaar.okyc.request",
                "reference_id": reference_id,
                "otp": otp,
            },
        )

    async def verify_pan(self, pan: str, name_as_per_pan: str, date_of_birth: str) -> Dict[str, Any]:
        return await self.call(
            "POST",
            "/kyc/pan/verify",
            json={
                "@entity": "in.co.sandbox.kyc.pan_verification.request",
                "pan": pan,
                "name_as_per_pan": name_as_per_pan,
                "date_of_birth": date_of_birth,
                "consent": CONSENT,
                "reason": REASON,
            },
        )

    async def verify_ifsc(self, ifsc: str) -> Dict[str, Any]:
        return await self.call("GET", f"/bank/{ifsc}")

    async def verify_bank_account(
        self, ifsc: str, account_number: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        logger.info("Penniless verification for %s / ...%s", ifsc, account_number[-4:])
        params = {"name": name} if name else None
        return await self.call(
            "GET",
            f"/bank/{ifsc}/accounts/{account_number}/penniless-verify",
            params=params,
        )

    async def company_master_data(self, identifier: str) -> Dict[str, Any]:
        return await self.call(
            "POST",
            "/mca/company/master-data/search",
            json={
                "@entity": "in.co.sandbox.kyc.mca.master_data.request",
                "id": identifier,
                "consent": CONSENT.lower(),
                "reason": "Company verification for DSA onboarding",
            },
        )

    async def health_check(self) -> bool:
        """Available unless the circuit is open; sends nothing to the provider."""
        return self.circuit_breaker.state != CircuitBreaker.OPEN

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_provider: Optional[KycProvider] = None


def get_kyc_provider() -> KycProvider:
    """FastAPI dependency; tests override it via app.dependency_overrides."""
    global _provider
    if _provider is None:
        _provider = SandboxProvider()
    return _provider


async def close_kyc_provider() -> None:
    if _provider is not None:
        await _provider.close()
