"""
DSA Onboarding Backend — Document Routes
==========================================

What:  Business document upload, listing, removal, requirement checklist and
       file serving for the caller's application.
How:   Upload is multipart (`file` + `documentType`, plus an optional `gstin`
       recorded on a gst_certificate). Bytes go through
       FileService (extension, size, python-magic sniffing, aiofiles write).
       A replaced or deleted file is removed from disk in a BackgroundTask
       so the response is not held up by filesystem work.
Who:   The documents step of the onboarding wizard.

Route order matters: /required, /complete and /files/... are declared
before the catch-all DELETE /{document_type}.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.database import get_db_session
from dsa_onboarding.exceptions import BadRequestError
from dsa_onboarding.middleware.rate_limit import general_limiter
from dsa_onboarding.middleware.validation import run_schema, validate
from dsa_onboarding.models.application import Application
from dsa_onboarding.routes.dependencies import current_application
from dsa_onboarding.schemas.application import (
    DocumentListResponse,
    DocumentTypeParams,
    DocumentUploadForm,
    DocumentUploadResponse,
    RequiredDocumentsResponse,
)
from dsa_onboarding.schemas.common import ErrorResponse, MessageResponse, StepCompleteResponse
from dsa_onboarding.services.document_service import document_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/documents",
    tags=["Documents"],
    dependencies=[Depends(general_limiter)],
    responses={
        400: {"description": "Invalid file or document type", "model": ErrorResponse},
        401: {"description": "Missing or invalid access token", "model": ErrorResponse},
    },
)


@router.get("", response_model=DocumentListResponse, summary="List uploaded documents")
@router.get("/", response_model=DocumentListResponse, include_in_schema=False)
async def list_documents(app: Application = Depends(current_application)) -> DocumentListResponse:
    return DocumentListResponse(documents=document_service.list_documents(app))


@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=201,
    summary="Upload a business document",
    description="Multipart upload of a JPEG, PNG or PDF (max 10MB). Replaces any existing "
    "document of the same type.",
)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None, description="JPEG, PNG or PDF file"),
    document_type: Optional[str] = Form(None, alias="documentType"),
    gstin: Optional[str] = Form(None, description="GSTIN printed on a gst_certificate"),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> DocumentUploadResponse:
    result = run_schema(DocumentUploadForm, {"documentType": document_type, "gstin": gstin})
    if not result.ok:
        raise result.to_error()
    if result.value.gstin and result.value.document_type != "gst_certificate":
        raise BadRequestError(
            "GSTIN can only be given with a GST certificate.",
            code="VALIDATION_ERROR",
            details=[{"field": "gstin", "message": "GSTIN can only be given with a GST certificate."}],
        )
    if file is None:
        raise BadRequestError(
            "No file uploaded.",
            code="INVALID_FILE",
            details=[{"field": "file", "message": "File is required."}],
        )

    try:
        content = await file.read()
        logger.info(
            "Received %s upload for application %s: filename=%s, size=%d bytes",
            result.value.document_type,
            app.id,
            file.filename or "unknown",
            len(content),
        )
        document, replaced = await document_service.upload(
            db,
            app,
            document_type=result.value.document_type,
            filename=file.filename or "upload",
            content=content,
            content_length=file.size,
            gstin=result.value.gstin,
        )
    finally:
        await file.close()

    if replaced:
        background_tasks.add_task(document_service.files.cleanup_file, replaced)
    return DocumentUploadResponse(document=document)


@router.get(
    "/required",
    response_model=RequiredDocumentsResponse,
    summary="Documents required for the application's entity type",
)
async def required_documents(
    app: Application = Depends(current_application),
) -> RequiredDocumentsResponse:
    return RequiredDocumentsResponse(**document_service.required(app))


@router.post("/complete", response_model=StepCompleteResponse, summary="Mark the documents step complete")
async def complete_documents(
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> StepCompleteResponse:
    next_step = await document_service.complete(db, app)
    return StepCompleteResponse(message="Documents step completed", next_step=next_step)


@router.get(
    "/files/{file_path:path}",
    summary="Serve an uploaded document",
    responses={200: {"description": "Stored file"}, 404: {"description": "File not found"}},
)
async def serve_file(
    file_path: str,
    app: Application = Depends(current_application),
) -> FileResponse:
    full_path = document_service.owned_file(app, file_path)
    return FileResponse(path=str(full_path), headers={"Cache-Control": "private, max-age=3600"})


@router.delete("/{document_type}", response_model=MessageResponse, summary="Remove a document")
async def delete_document(
    background_tasks: BackgroundTasks,
    params: DocumentTypeParams = Depends(validate(DocumentTypeParams, "params")),
    app: Application = Depends(current_application),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    stored_path = await document_service.delete(db, app, params.document_type)
    if stored_path:
        background_tasks.add_task(document_service.files.cleanup_file, stored_path)
    return MessageResponse(message="Document removed successfully")
