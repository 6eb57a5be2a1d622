"""
DSA Onboarding Backend — Shared Schema Pieces
===============================================

What:  The camelCase base model plus the error/health/message envelopes.
How:   The wire format is camelCase (entityType, accessToken); Python code
       uses snake_case. CamelModel maps between them with an alias
       generator, and FastAPI serializes response models by alias.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Unknown fields are ignored (stripped) on input."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }


class ErrorDetail(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Shape of every error body (see main.register_exception_handlers)."""

    success: bool = False
    error: str = Field(description="Human-readable message")
    code: str = Field(description="Machine-readable error code")
    details: Optional[List[ErrorDetail]] = None
    stack: Optional[str] = Field(default=None, description="Development only")


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class StepCompleteResponse(CamelModel):
    success: bool = True
    message: str
    next_step: str


class HealthResponse(CamelModel):
    success: bool = True
    status: str = Field(description="ok | degraded")
    timestamp: datetime
    environment: str
    version: str
    database: str = Field(description="connected | disconnected")
    provider: str = Field(description="available | unavailable")


class ApiInfoResponse(CamelModel):
    success: bool = True
    name: str
    version: str
    description: str
    documentation: str
