"""
DSA Onboarding Backend — Error Taxonomy Tests
===============================================

What:  The error body shape and translate_exception() mappings.
"""

import jwt
import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from dsa_onboarding.exceptions import (
    ApiError,
    BadRequestError,
    CircuitBreakerOpenError,
    FileStorageError,
    MalformedIdError,
    ProviderError,
    TooManyRequestsError,
    translate_exception,
)


class _Sample(BaseModel):
    count: int


def _pydantic_error() -> PydanticValidationError:
    try:
        _Sample(count="many")
    except PydanticValidationError as e:
        return e
    raise AssertionError("expected a validation error")


class TestErrorBody:
    def test_minimal_body(self):
        assert BadRequestError("Nope").to_body() == {
            "success": False,
            "error": "Nope",
            "code": "BAD_REQUEST",
        }

    def test_details_and_extra_keys(self):
        error = TooManyRequestsError(
            "Slow down",
            code="OTP_RATE_LIMIT",
            retry_after=42,
            details=[{"field": "phone", "message": "x"}],
            extra={"retryAfter": 60},
        )

        body = error.to_body()

        assert body["code"] == "OTP_RATE_LIMIT"
        assert body["details"] == [{"field": "phone", "message": "x"}]
        assert body["retryAfter"] == 60
        assert error.headers["Retry-After"] == "42"
        assert error.status_code == 429

    def test_provider_errors_are_503_with_retry_after(self):
        assert ProviderError(retry_after=30).headers == {"Retry-After": "30"}
        assert ProviderError().headers == {}
        circuit = CircuitBreakerOpenError(recovery_time=12)
        assert circuit.status_code == 503
        assert circuit.code == "CIRCUIT_OPEN"
        assert circuit.headers["Retry-After"] == "12"

    def test_file_storage_error_is_not_operational(self):
        error = FileStorageError()

        assert error.status_code == 500
        assert error.code == "FILE_STORAGE_ERROR"
        assert error.is_operational is False


class TestTranslateException:
    def test_api_errors_pass_through(self):
        error = BadRequestError("Keep me")

        assert translate_exception(error) is error

    def test_integrity_error_is_duplicate(self):
        error = translate_exception(IntegrityError("INSERT ...", {}, Exception("unique")))

        assert error.status_code == 409
        assert error.code == "DUPLICATE_ERROR"

    def test_pydantic_error_is_validation_error(self):
        error = translate_exception(_pydantic_error())

        assert error.status_code == 400
        assert error.code == "VALIDATION_ERROR"
        assert error.details[0]["field"] == "count"

    def test_malformed_id(self):
        error = translate_exception(MalformedIdError("xyz"))

        assert error.code == "INVALID_ID"
        assert error.message == "Invalid ID format"

    @pytest.mark.parametrize(
        "exc, code",
        [
            (jwt.ExpiredSignatureError("expired"), "TOKEN_EXPIRED"),
            (jwt.InvalidSignatureError("bad sig"), "INVALID_TOKEN"),
            (jwt.DecodeError("garbage"), "INVALID_TOKEN"),
        ],
    )
    def test_token_errors_are_401(self, exc, code):
        error = translate_exception(exc)

        assert error.status_code == 401
        assert error.code == code

    def test_unknown_errors_hide_details(self):
        error = translate_exception(RuntimeError("db password is hunter2"))

        assert isinstance(error, ApiError)
        assert error.status_code == 500
        assert error.code == "INTERNAL_ERROR"
        assert "hunter2" not in error.message
        assert error.is_operational is False
