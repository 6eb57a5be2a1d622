"""
DSA Onboarding Backend — Request Validator
============================================

What:  Schema-driven validation of one slice of the request (JSON body, path
       params or query string) before the route handler runs.
How:   run_schema() interprets a pydantic model against raw data and returns a
       discriminated ValidationResult: either the sanitized value or the
       complete list of field violations. validate() wraps it as a FastAPI
       dependency that raises 400 VALIDATION_ERROR on failure, so the handler
       body never executes with bad input.
Who:   Route declarations: `payload: SendOtpRequest = Depends(validate(SendOtpRequest))`.

Error body:
    {
        "success": false,
        "error": "Invalid phone number. ..., OTP is required.",
        "code": "VALIDATION_ERROR",
        "details": [{"field": "phone", "message": "..."}, {"field": "otp", "message": "..."}]
    }
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from dsa_onboarding.exceptions import BadRequestError
from dsa_onboarding.schemas.validators import required_message

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

TARGETS = ("body", "params", "query")


@dataclass
class FieldViolation:
    field: str
    message: str


@dataclass
class ValidationResult:
    """Either `value` is set and `errors` is empty, or the reverse."""

    value: Optional[BaseModel] = None
    errors: List[FieldViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_error(self) -> BadRequestError:
        return BadRequestError(
            ", ".join(v.message for v in self.errors),
            code="VALIDATION_ERROR",
            details=[{"field": v.field, "message": v.message} for v in self.errors],
        )


def _violation(err: Dict[str, Any]) -> FieldViolation:
    loc = [str(part) for part in err.get("loc", ())]
    name = ".".join(loc) or "body"
    if err.get("type") == "missing":
        return FieldViolation(name, required_message(loc[-1] if loc else name))
    return FieldViolation(name, err.get("msg", "Invalid value"))


def run_schema(schema: Type[SchemaT], data: Any) -> ValidationResult:
    """
    Validate `data` against `schema`, collecting every violation.

    Pydantic validates all fields before raising, so a payload missing three
    fields yields three violations in one pass.
    """
    if not isinstance(data, dict):
        return ValidationResult(errors=[FieldViolation("body", "Request body must be a JSON object.")])
    try:
        return ValidationResult(value=schema.model_validate(data))
    except PydanticValidationError as exc:
        return ValidationResult(errors=[_violation(err) for err in exc.errors()])


async def read_json_body(request: Request) -> Any:
    """Parsed JSON body, {} when empty; None when the body is not JSON."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None


async def extract_target(request: Request, target: str) -> Any:
    if target == "body":
        return await read_json_body(request)
    if target == "params":
        return dict(request.path_params)
    if target == "query":
        return dict(request.query_params)
    raise ValueError(f"Unknown validation target '{target}'. Expected one of {TARGETS}")


def validate(schema: Type[SchemaT], target: str = "body") -> Callable[..., Any]:
    """
    Build a dependency that validates `target` against `schema`.

    Returns the sanitized model instance; raises BadRequestError
    (400 VALIDATION_ERROR) with every violation otherwise.
    """
    if target not in TARGETS:
        raise ValueError(f"Unknown validation target '{target}'. Expected one of {TARGETS}")

    async def dependency(request: Request) -> SchemaT:
        result = run_schema(schema, await extract_target(request, target))
        if not result.ok:
            logger.info(
                "Validation failed for %s %s (%s): %s",
                request.method,
                request.url.path,
                target,
                [v.field for v in result.errors],
            )
            raise result.to_error()
        return result.value  # type: ignore[return-value]

    dependency.__name__ = f"validate_{schema.__name__}_{target}"
    return dependency
