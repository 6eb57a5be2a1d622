"""
DSA Onboarding Backend — Application, Reference and Document Schemas
======================================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from dsa_onboarding.schemas.common import CamelModel
from dsa_onboarding.schemas.validators import CompanySubType, DocumentType, Email, EntityType, Gstin, Phone


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════

class EntityTypeUpdate(CamelModel):
    entity_type: EntityType
    company_sub_type: Optional[CompanySubType] = None


class ReferenceInput(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    mobile: Phone
    email: Optional[Email] = None
    address: str = Field(min_length=10, max_length=500)


class ReferenceIndexParams(CamelModel):
    index: int = Field(ge=0)


class PartnerInput(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    phone: Phone
    email: Optional[Email] = None
    is_lead_partner: bool = False


class PartnerIndexParams(CamelModel):
    index: int = Field(ge=0)


class DocumentTypeParams(CamelModel):
    document_type: DocumentType


class DocumentUploadForm(CamelModel):
    document_type: DocumentType
    gstin: Optional[Gstin] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════

class ApplicationSnapshot(CamelModel):
    id: str
    entity_type: str
    company_sub_type: Optional[str] = None
    status: str
    completed_steps: Dict[str, bool]
    phone: str
    email: Optional[str] = None
    kyc: Dict[str, Any] = Field(default_factory=dict)
    bank: Optional[Dict[str, Any]] = None
    references: List[Dict[str, Any]] = Field(default_factory=list)
    documents: List[Dict[str, Any]] = Field(default_factory=list)
    partners: List[Dict[str, Any]] = Field(default_factory=list)
    company: Optional[Dict[str, Any]] = None
    agreement: Optional[Dict[str, Any]] = None
    next_step: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ApplicationResponse(CamelModel):
    success: bool = True
    application: ApplicationSnapshot


class StepInfo(CamelModel):
    id: str
    name: str
    order: int
    completed: bool
    current: bool
    locked: bool


class StepsResponse(CamelModel):
    success: bool = True
    steps: List[StepInfo]
    current_step: str
    total_steps: int
    completed_count: int


class StatusResponse(CamelModel):
    success: bool = True
    status: str
    entity_type: str
    progress: int = Field(description="Percentage of steps completed")
    completed_steps: int
    total_steps: int
    next_step: str


class EntityTypeResponse(CamelModel):
    success: bool = True
    entity_type: str
    company_sub_type: Optional[str] = None
    next_step: str


class ReferenceListResponse(CamelModel):
    success: bool = True
    references: List[Dict[str, Any]]
    count: int
    required: int
    is_complete: bool


class ReferenceMutationResponse(CamelModel):
    success: bool = True
    message: str
    references: List[Dict[str, Any]]
    count: int


class PartnerListResponse(CamelModel):
    success: bool = True
    partners: List[Dict[str, Any]]
    count: int
    lead_partner: Optional[str] = None
    kyc_pending_count: int
    all_kyc_complete: bool


class PartnerMutationResponse(CamelModel):
    success: bool = True
    message: str
    partners: List[Dict[str, Any]]
    count: int


class AgreementStatus(CamelModel):
    ready_to_sign: bool
    pending_steps: List[str]
    signed: bool
    signed_at: Optional[str] = None
    complete: bool


class AgreementStatusResponse(CamelModel):
    success: bool = True
    status: AgreementStatus


class AgreementSignedResponse(CamelModel):
    success: bool = True
    message: str
    status: str
    completed_at: Optional[datetime] = None


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: List[Dict[str, Any]]


class DocumentUploadResponse(CamelModel):
    success: bool = True
    message: str = "Document uploaded successfully"
    document: Dict[str, Any]


class RequiredDocument(CamelModel):
    type: str
    uploaded: bool


class RequiredDocumentsResponse(CamelModel):
    success: bool = True
    entity_type: str
    required: List[RequiredDocument]
    is_complete: bool
