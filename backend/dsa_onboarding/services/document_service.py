"""
DSA Onboarding Backend — Document Service
===========================================

What:  Upload, replace, list, delete and completeness check of the
       application's supporting documents.
How:   Bytes go through FileService (validated + stored on disk); the
       application keeps one entry per document type in its `documents`
       JSON list. A replaced or deleted file is removed after the response
       via a FastAPI BackgroundTask supplied by the route.
Who:   routes/documents.py.

Document entry:
    {type, filename, path, url, mimeType, size, verified, uploadedAt}
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.constants import REQUIRED_DOCUMENTS
from dsa_onboarding.database import utcnow
from dsa_onboarding.exceptions import BadRequestError, NotFoundError
from dsa_onboarding.models.application import Application
from dsa_onboarding.services.file_service import FileService, file_service

logger = logging.getLogger(__name__)

FILES_URL_PREFIX = "/api/documents/files"


def _find(app: Application, document_type: str) -> int:
    for i, doc in enumerate(app.documents or []):
        if doc.get("type") == document_type:
            return i
    return -1


class DocumentService:
    def __init__(self, files: Optional[FileService] = None):
        self.files = files or file_service

    def list_documents(self, app: Application) -> List[Dict[str, Any]]:
        return list(app.documents or [])

    async def upload(
        self,
        db: AsyncSession,
        app: Application,
        document_type: str,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
        gstin: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        """
        Store the file and record it under `document_type`.

        Returns:
            (document entry, relative path of the replaced file or None)
        """
        relative_path, mime_type = await self.files.validate_and_store(
            filename=filename,
            content=content,
            content_length=content_length,
        )

        document = {
            "type": document_type,
            "filename": Path(filename).name,
            "path": relative_path,
            "url": f"{FILES_URL_PREFIX}/{relative_path}",
            "mimeType": mime_type,
            "size": len(content),
            "verified": False,
            "uploadedAt": utcnow().isoformat(),
        }
        if gstin:
            document["gstin"] = gstin

        replaced: Optional[str] = None
        index = _find(app, document_type)
        try:
            if index >= 0:
                replaced = app.documents[index].get("path")
                app.documents[index] = document
            else:
                app.documents.append(document)
            await db.flush()
        except Exception:
            await self.files.cleanup_file(relative_path)
            raise

        logger.info(
            "Document %s uploaded for application %s (%s, %d bytes)",
            document_type,
            app.id,
            mime_type,
            len(content),
        )
        return document, replaced

    async def delete(self, db: AsyncSession, app: Application, document_type: str) -> Optional[str]:
        """Drop the entry; returns the stored path for background cleanup."""
        index = _find(app, document_type)
        if index < 0:
            raise NotFoundError("Document not found")

        removed = app.documents.pop(index)
        await db.flush()
        logger.info("Document %s deleted for application %s", document_type, app.id)
        return removed.get("path")

    def required(self, app: Application) -> Dict[str, Any]:
        uploaded = {doc.get("type") for doc in app.documents or []}
        required = [
            {"type": doc_type, "uploaded": doc_type in uploaded}
            for doc_type in REQUIRED_DOCUMENTS.get(app.entity_type, [])
        ]
        return {
            "entity_type": app.entity_type,
            "required": required,
            "is_complete": all(item["uploaded"] for item in required),
        }

    async def complete(self, db: AsyncSession, app: Application) -> str:
        missing = [item["type"] for item in self.required(app)["required"] if not item["uploaded"]]
        if missing:
            raise BadRequestError(f"Missing required documents: {', '.join(missing)}")
        app.mark_step("documents")
        await db.flush()
        return app.next_step()

    def owned_file(self, app: Application, relative_path: str) -> Path:
        """Absolute path of a file this application uploaded; 404 otherwise."""
        if not any(doc.get("path") == relative_path for doc in app.documents or []):
            raise NotFoundError("File not found")
        return self.files.resolve(relative_path)


document_service = DocumentService()
