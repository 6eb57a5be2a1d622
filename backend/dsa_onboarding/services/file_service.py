"""
DSA Onboarding Backend — File Storage Service
===============================================

What:  Validation, storage, lookup and cleanup of uploaded onboarding documents.
How:   Checks extension, size and sniffed content type (libmagic via
       python-magic), then writes the bytes with aiofiles under a
       date-organized directory with a random filename.
Who:   document_service (upload / replace / delete) and the file download
       route (resolve).

Layout:
    <STORAGE_ROOT>/YYYY/MM/DD/<uuid>.<ext>

    Filenames carry no user input. resolve() refuses any relative path that
    escapes the storage root.

Accepted content:
    .jpg / .jpeg  image/jpeg
    .png          image/png
    .pdf          application/pdf
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles

from dsa_onboarding.config import settings
from dsa_onboarding.exceptions import BadRequestError, FileStorageError, NotFoundError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf"}


def _invalid_file(message: str) -> BadRequestError:
    return BadRequestError(
        message,
        code="INVALID_FILE",
        details=[{"field": "file", "message": message}],
    )


class FileService:
    """Stores uploads under `storage_root`; one instance per storage root."""

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────
    def validate_extension(self, filename: str) -> str:
        """Lowercase extension with the dot; rejects anything not allowed."""
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise _invalid_file(
                f"File type '{ext or filename}' is not supported. "
                f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise _invalid_file("Uploaded file is empty.")

        if content_length and content_length > settings.max_file_size:
            raise _invalid_file(f"File size exceeds maximum of {max_mb:.0f}MB.")

        if actual_size > settings.max_file_size:
            raise _invalid_file(
                f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB."
            )

    def validate_mime_type(self, file_content: bytes) -> str:
        """
        Detect the real content type from the file's magic bytes.

        Raises:
            BadRequestError INVALID_FILE for content outside ALLOWED_MIME_TYPES.
            FileStorageError when libmagic itself fails.
        """
        import magic

        try:
            mime_type = magic.from_buffer(file_content[:2048], mime=True)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise _invalid_file(
                f"File content type '{mime_type}' is not supported. "
                "Upload a JPEG, PNG or PDF file."
            )
        return mime_type

    # ── Storage ───────────────────────────────────────────────────────────
    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        relative_path = f"{date_dir}/{uuid.uuid4()}{extension}"
        return self.storage_root / relative_path, relative_path

    async def store_file(self, content: bytes, extension: str) -> str:
        """Write `content` and return its path relative to the storage root."""
        absolute_path, relative_path = self._generate_storage_path(extension)
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded document. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", relative_path, len(content))
        return relative_path

    def resolve(self, relative_path: str) -> Path:
        """Absolute path of a stored file; 404 when outside the root or missing."""
        candidate = (self.storage_root / relative_path).resolve()
        if self.storage_root not in candidate.parents or not candidate.is_file():
            raise NotFoundError("File not found")
        return candidate

    async def cleanup_file(self, relative_path: str) -> None:
        """Best-effort removal; failures are logged, never raised."""
        path = (self.storage_root / relative_path).resolve()
        if self.storage_root not in path.parents:
            logger.warning("Refusing to delete outside storage root: %s", relative_path)
            return
        try:
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", relative_path)
            else:
                logger.debug("Cleanup: file already gone: %s", relative_path)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", relative_path, str(e))

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> Tuple[str, str]:
        """
        Cheapest checks first: extension, size, sniffed type, then the write.

        Returns:
            (relative_path, mime_type)
        """
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        mime_type = self.validate_mime_type(content)
        relative_path = await self.store_file(content, ext)
        return relative_path, mime_type


file_service = FileService()
