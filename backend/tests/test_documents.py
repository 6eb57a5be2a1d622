"""
DSA Onboarding Backend — Document Route Tests
===============================================

What:  Multipart upload, replacement, listing, removal, requirement checklist,
       completion and owner-only file serving.
How:   Content sniffing is patched to a fixed MIME type so the suite does not
       depend on the host's libmagic database; extension and size checks run
       for real.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from dsa_onboarding.database import async_session_factory
from dsa_onboarding.models import AuditLog
from dsa_onboarding.services.file_service import file_service

PHONE = "9876543210"
PROPRIETORSHIP_DOCS = ["gst_certificate", "udyam_registration", "shop_act_license", "cancelled_cheque"]


@pytest.fixture(autouse=True)
def sniff_as_jpeg():
    with patch.object(file_service, "validate_mime_type", return_value="image/jpeg") as sniff:
        yield sniff


async def _upload(client, headers, document_type, content, filename="doc.jpg"):
    return await client.post(
        "/api/documents/upload",
        files={"file": (filename, content, "image/jpeg")},
        data={"documentType": document_type},
        headers=headers,
    )


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_stores_file_and_records_entry(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await _upload(test_client, session["headers"], "gst_certificate", sample_jpeg_bytes)

        assert response.status_code == 201
        document = response.json()["document"]
        assert document["type"] == "gst_certificate"
        assert document["mimeType"] == "image/jpeg"
        assert document["size"] == len(sample_jpeg_bytes)
        assert document["verified"] is False
        assert document["url"] == f"/api/documents/files/{document['path']}"
        assert (file_service.storage_root / document["path"]).read_bytes() == sample_jpeg_bytes

    @pytest.mark.asyncio
    async def test_reupload_replaces_and_removes_old_file(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        headers = session["headers"]

        first = (await _upload(test_client, headers, "gst_certificate", sample_jpeg_bytes)).json()["document"]
        second = (await _upload(test_client, headers, "gst_certificate", sample_jpeg_bytes)).json()["document"]

        listing = (await test_client.get("/api/documents", headers=headers)).json()["documents"]
        assert [d["path"] for d in listing] == [second["path"]]
        assert not (file_service.storage_root / first["path"]).exists()

    @pytest.mark.asyncio
    async def test_unsupported_extension_rejected(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await _upload(
            test_client, session["headers"], "gst_certificate", sample_jpeg_bytes, filename="doc.gif"
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE"

    @pytest.mark.asyncio
    async def test_unknown_document_type_rejected(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await _upload(test_client, session["headers"], "selfie", sample_jpeg_bytes)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["details"][0]["field"] == "documentType"

    @pytest.mark.asyncio
    async def test_missing_file_rejected(self, test_client, login):
        session = await login(PHONE, entity_type="proprietorship")

        response = await test_client.post(
            "/api/documents/upload",
            data={"documentType": "gst_certificate"},
            headers=session["headers"],
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE"


    @pytest.mark.asyncio
    async def test_gstin_recorded_on_gst_certificate(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await test_client.post(
            "/api/documents/upload",
            files={"file": ("gst.jpg", sample_jpeg_bytes, "image/jpeg")},
            data={"documentType": "gst_certificate", "gstin": "27aapfu0939f1zv"},
            headers=session["headers"],
        )

        assert response.status_code == 201
        assert response.json()["document"]["gstin"] == "27AAPFU0939F1ZV"

    @pytest.mark.asyncio
    async def test_malformed_gstin_rejected(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await test_client.post(
            "/api/documents/upload",
            files={"file": ("gst.jpg", sample_jpeg_bytes, "image/jpeg")},
            data={"documentType": "gst_certificate", "gstin": "27AAPFU0939F1AV"},
            headers=session["headers"],
        )

        assert response.status_code == 400
        assert response.json()["details"] == [{"field": "gstin", "message": "Invalid GSTIN format."}]

    @pytest.mark.asyncio
    async def test_gstin_only_with_gst_certificate(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")

        response = await test_client.post(
            "/api/documents/upload",
            files={"file": ("cheque.jpg", sample_jpeg_bytes, "image/jpeg")},
            data={"documentType": "cancelled_cheque", "gstin": "27AAPFU0939F1ZV"},
            headers=session["headers"],
        )

        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "gstin"

class TestRequirements:
    @pytest.mark.asyncio
    async def test_required_lists_entity_documents(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        await _upload(test_client, session["headers"], "gst_certificate", sample_jpeg_bytes)

        body = (await test_client.get("/api/documents/required", headers=session["headers"])).json()

        assert body["entityType"] == "proprietorship"
        assert [r["type"] for r in body["required"]] == PROPRIETORSHIP_DOCS
        assert body["required"][0]["uploaded"] is True
        assert body["isComplete"] is False

    @pytest.mark.asyncio
    async def test_individual_needs_nothing(self, test_client, login):
        session = await login(PHONE)

        body = (await test_client.get("/api/documents/required", headers=session["headers"])).json()

        assert body["required"] == []
        assert body["isComplete"] is True

    @pytest.mark.asyncio
    async def test_complete_lists_missing_documents(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        await _upload(test_client, session["headers"], "gst_certificate", sample_jpeg_bytes)

        response = await test_client.post("/api/documents/complete", headers=session["headers"])

        assert response.status_code == 400
        assert response.json()["error"] == (
            "Missing required documents: udyam_registration, shop_act_license, cancelled_cheque"
        )

    @pytest.mark.asyncio
    async def test_complete_marks_step(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        for doc_type in PROPRIETORSHIP_DOCS:
            await _upload(test_client, session["headers"], doc_type, sample_jpeg_bytes)

        response = await test_client.post("/api/documents/complete", headers=session["headers"])

        assert response.status_code == 200
        assert response.json()["nextStep"] == "kyc"


class TestRemovalAndServing:
    @pytest.mark.asyncio
    async def test_delete_removes_entry_and_file(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        headers = session["headers"]
        document = (await _upload(test_client, headers, "gst_certificate", sample_jpeg_bytes)).json()["document"]

        deleted = await test_client.delete("/api/documents/gst_certificate", headers=headers)
        again = await test_client.delete("/api/documents/gst_certificate", headers=headers)

        assert deleted.status_code == 200
        assert not (file_service.storage_root / document["path"]).exists()
        assert again.status_code == 404
        assert again.json()["error"] == "Document not found"

    @pytest.mark.asyncio
    async def test_owner_can_download(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        document = (
            await _upload(test_client, session["headers"], "gst_certificate", sample_jpeg_bytes)
        ).json()["document"]

        response = await test_client.get(document["url"], headers=session["headers"])

        assert response.status_code == 200
        assert response.content == sample_jpeg_bytes

    @pytest.mark.asyncio
    async def test_download_streams_through_the_audit_recorder(self, test_client, login, sample_jpeg_bytes):
        session = await login(PHONE, entity_type="proprietorship")
        document = (
            await _upload(test_client, session["headers"], "gst_certificate", sample_jpeg_bytes)
        ).json()["document"]

        response = await test_client.get(document["url"], headers=session["headers"])

        assert response.headers["content-type"] == "image/jpeg"
        assert int(response.headers["content-length"]) == len(sample_jpeg_bytes)
        async with async_session_factory() as db:
            rows = (await db.execute(select(AuditLog).where(AuditLog.path == document["url"]))).scalars().all()
        assert len(rows) == 1
        assert rows[0].status_code == 200
        assert rows[0].response_data is None

    @pytest.mark.asyncio
    async def test_other_applicant_cannot_download(self, test_client, login, sample_jpeg_bytes):
        owner = await login(PHONE, entity_type="proprietorship")
        document = (
            await _upload(test_client, owner["headers"], "gst_certificate", sample_jpeg_bytes)
        ).json()["document"]
        stranger = await login("9123456780", entity_type="proprietorship")

        response = await test_client.get(document["url"], headers=stranger["headers"])

        assert response.status_code == 404
