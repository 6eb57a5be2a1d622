"""
DSA Onboarding Backend — Sandbox Provider Tests (Mocked Transport)
====================================================================

What:  CircuitBreaker state machine and SandboxProvider request handling.
How:   httpx.MockTransport answers every request in-process; retry waits
       are zero in the test environment.

What we test:
    ✅ Circuit breaker CLOSED → OPEN → HALF_OPEN → CLOSED
    ✅ HALF_OPEN lets exactly one trial call through
    ✅ Token obtained once and sent as the Authorization header
    ✅ 403 "Insufficient privilege" → re-authenticate and replay once
    ✅ 5xx retried, then ProviderError with Retry-After
    ✅ 4xx returned to the caller untouched
    ✅ Circuit opens after repeated provider failures
    ❌ Real sandbox.co.in calls
"""

import time

import httpx
import pytest
from tenacity import wait_exponential_jitter

from dsa_onboarding.config import settings
from dsa_onboarding.exceptions import CircuitBreakerOpenError, ProviderError
from dsa_onboarding.services.sandbox_service import CircuitBreaker, SandboxProvider


class TestCircuitBreaker:
    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)

        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0
        assert cb.can_execute() is True

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        assert cb.state == CircuitBreaker.CLOSED
        assert cb.can_execute() is True

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        assert cb.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert exc_info.value.status_code == 503

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()

        assert cb.failure_count == 0
        assert cb.state == CircuitBreaker.CLOSED

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61

        assert cb.can_execute() is True
        assert cb.state == CircuitBreaker.HALF_OPEN

    def test_failed_trial_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61
        cb.can_execute()

        cb.record_failure()

        assert cb.state == CircuitBreaker.OPEN

    def test_successful_trial_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61
        cb.can_execute()

        cb.record_success()

        assert cb.state == CircuitBreaker.CLOSED

    def test_half_open_admits_a_single_trial(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61

        assert cb.can_execute() is True
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()
        assert cb.state == CircuitBreaker.HALF_OPEN

    def test_next_trial_allowed_after_the_first_reports(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61
        cb.can_execute()

        cb.record_success()

        assert cb.can_execute() is True
        assert cb.can_execute() is True

    def test_abandoned_trial_is_replaced(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.last_failure_time = time.time() - 61
        cb.can_execute()
        cb.trial_started = time.time() - 61

        assert cb.can_execute() is True


class TestRetryPolicy:
    def test_backoff_uses_multiplier(self):
        wait = SandboxProvider._send_with_retry.retry.wait

        assert isinstance(wait, wait_exponential_jitter)
        assert wait.multiplier == settings.retry_min_wait
        assert wait.max == settings.retry_max_wait


class _SandboxStub:
    """Scripted sandbox: answers /authenticate and replays queued API responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.auth_calls = 0
        self.api_requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authenticate":
            self.auth_calls += 1
            return httpx.Response(200, json={"access_token": f"token-{self.auth_calls}"})
        self.api_requests.append(request)
        return self.responses.pop(0)


def _provider(stub: _SandboxStub) -> SandboxProvider:
    return SandboxProvider(
        base_url="https://sandbox.test",
        api_key="key",
        api_secret="secret",
        transport=httpx.MockTransport(stub),
    )


class TestSandboxProvider:
    @pytest.mark.asyncio
    async def test_token_is_cached_and_sent(self):
        stub = _SandboxStub(
            httpx.Response(200, json={"code": 200, "data": {"ifsc": "HDFC0001234"}}),
            httpx.Response(200, json={"code": 200, "data": {"ifsc": "HDFC0001234"}}),
        )
        provider = _provider(stub)

        await provider.verify_ifsc("HDFC0001234")
        body = await provider.verify_ifsc("HDFC0001234")

        assert body["data"]["ifsc"] == "HDFC0001234"
        assert stub.auth_calls == 1
        assert stub.api_requests[0].headers["Authorization"] == "token-1"
        assert stub.api_requests[0].headers["x-api-key"] == "key"
        await provider.close()

    @pytest.mark.asyncio
    async def test_insufficient_privilege_reauthenticates_once(self):
        stub = _SandboxStub(
            httpx.Response(403, json={"message": "Insufficient privilege"}),
            httpx.Response(200, json={"code": 200, "data": {"status": "VALID"}}),
        )
        provider = _provider(stub)

        body = await provider.verify_pan("ABCPE1234F", "RAVI KUMAR", "15/08/1990")

        assert body["data"]["status"] == "VALID"
        assert stub.auth_calls == 2
        assert stub.api_requests[1].headers["Authorization"] == "token-2"
        await provider.close()

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_then_raised(self):
        stub = _SandboxStub(*[httpx.Response(502, text="bad gateway") for _ in range(settings.retry_max_attempts)])
        provider = _provider(stub)

        with pytest.raises(ProviderError) as exc_info:
            await provider.verify_ifsc("HDFC0001234")

        assert len(stub.api_requests) == settings.retry_max_attempts
        assert exc_info.value.status_code == 503
        assert provider.circuit_breaker.failure_count == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self):
        stub = _SandboxStub(
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"code": 200, "data": {"ifsc": "HDFC0001234"}}),
        )
        provider = _provider(stub)

        body = await provider.verify_ifsc("HDFC0001234")

        assert body["code"] == 200
        assert provider.circuit_breaker.failure_count == 0
        await provider.close()

    @pytest.mark.asyncio
    async def test_client_errors_are_returned(self):
        stub = _SandboxStub(httpx.Response(422, json={"code": 422, "message": "Invalid Aadhaar Card"}))
        provider = _provider(stub)

        body = await provider.generate_aadhaar_otp("123412341234")

        assert body == {"code": 422, "message": "Invalid Aadhaar Card"}
        assert len(stub.api_requests) == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        stub = _SandboxStub(*[httpx.Response(500, text="boom") for _ in range(settings.retry_max_attempts * 2)])
        provider = _provider(stub)
        provider.circuit_breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        for _ in range(2):
            with pytest.raises(ProviderError):
                await provider.verify_ifsc("HDFC0001234")
        sent = len(stub.api_requests)

        with pytest.raises(CircuitBreakerOpenError):
            await provider.verify_ifsc("HDFC0001234")

        assert len(stub.api_requests) == sent
        await provider.close()

    @pytest.mark.asyncio
    async def test_health_check_false_when_circuit_open(self):
        provider = _provider(_SandboxStub())
        provider.circuit_breaker.state = CircuitBreaker.OPEN

        assert await provider.health_check() is False
        await provider.close()
