"""
DSA Onboarding Backend — Application & Reference Tests
========================================================

What:  Step progression on the model, the /api/application routes and the
       /api/references CRUD + completion rules.
"""

import pytest

from dsa_onboarding.models import Application
from dsa_onboarding.services.application_service import application_snapshot, mask_account_number
from dsa_onboarding.services.token_service import Identity, create_access_token

PHONE = "9876543210"


def _reference(mobile: str, name: str = "Ravi Kumar") -> dict:
    return {"name": name, "mobile": mobile, "address": "12 MG Road, Bengaluru 560001"}


class TestStepProgression:
    def test_next_step_follows_entity_order(self, make_application):
        app = make_application("individual")

        assert app.next_step() == "kyc"
        app.mark_step("kyc")
        assert app.next_step() == "bank"

    def test_all_steps_done_means_completed(self, make_application):
        app = make_application("individual")
        for step in app.steps:
            app.mark_step(step)

        assert app.next_step() == "completed"

    def test_can_proceed_only_after_previous_steps(self, make_application):
        app = make_application("proprietorship")

        assert app.can_proceed_to("kyc")
        assert not app.can_proceed_to("bank")
        app.mark_step("kyc")
        assert app.can_proceed_to("bank")
        assert not app.can_proceed_to("partners")

    def test_terminal_status_is_not_overwritten(self, make_application):
        app = make_application("individual", status="rejected")

        app.sync_status()

        assert app.status == "rejected"

    def test_company_start_keeps_sub_type_only_for_company(self):
        individual = Application.start(phone=PHONE, entity_type="individual", company_sub_type="pvt")

        assert individual.company_sub_type is None

    def test_snapshot_masks_account_number(self, make_application):
        app = make_application("individual", bank={"accountNumber": "123456789012", "ifsc": "HDFC0001234"})

        snapshot = application_snapshot(app)

        assert snapshot["bank"]["accountNumber"] == "********9012"
        assert snapshot["next_step"] == "kyc"

    def test_mask_short_numbers(self):
        assert mask_account_number("1234") == "1234"
        assert mask_account_number("12345") == "*2345"


class TestApplicationRoutes:
    @pytest.mark.asyncio
    async def test_snapshot(self, test_client, login):
        session = await login(PHONE, entity_type="proprietorship")

        response = await test_client.get("/api/application", headers=session["headers"])

        assert response.status_code == 200
        application = response.json()["application"]
        assert application["id"] == session["application"]["id"]
        assert application["entityType"] == "proprietorship"
        assert application["references"] == []
        assert application["nextStep"] == "kyc"

    @pytest.mark.asyncio
    async def test_steps(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.get("/api/application/steps", headers=session["headers"])

        body = response.json()
        assert body["currentStep"] == "kyc"
        assert body["totalSteps"] == 4
        assert body["completedCount"] == 0
        assert [s["id"] for s in body["steps"]] == ["kyc", "bank", "references", "agreement"]
        first, second = body["steps"][0], body["steps"][1]
        assert first["current"] is True and first["locked"] is False
        assert second["locked"] is True
        assert first["order"] == 1

    @pytest.mark.asyncio
    async def test_status(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.get("/api/application/status", headers=session["headers"])

        body = response.json()
        assert body == {
            "success": True,
            "status": "kyc",
            "entityType": "individual",
            "progress": 0,
            "completedSteps": 0,
            "totalSteps": 4,
            "nextStep": "kyc",
        }

    @pytest.mark.asyncio
    async def test_change_entity_type_defaults_company_sub_type(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.patch(
            "/api/application/entity-type",
            json={"entityType": "company"},
            headers=session["headers"],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["entityType"] == "company"
        assert body["companySubType"] == "pvt_ltd"
        assert body["nextStep"] == "company_verification"

    @pytest.mark.asyncio
    async def test_change_entity_type_rejected_invalid_value(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.patch(
            "/api/application/entity-type",
            json={"entityType": "trust"},
            headers=session["headers"],
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_requires_auth(self, test_client):
        response = await test_client.get("/api/application")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_route_is_404(self, test_client):
        response = await test_client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Route GET /api/nope not found",
            "code": "ROUTE_NOT_FOUND",
        }


    @pytest.mark.asyncio
    async def test_malformed_application_id_is_invalid_id(self, test_client, login):
        session = await login(PHONE)
        token = create_access_token(
            Identity(user_id=session["user"]["id"], phone=PHONE, application_id="not-an-object-id")
        )

        response = await test_client.get(
            "/api/application/status", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_ID"
        assert response.json()["error"] == "Invalid ID format"


class TestHealth:
    @pytest.mark.asyncio
    async def test_reports_database_and_provider(self, test_client, kyc_provider):
        kyc_provider.health_check.return_value = True

        response = await test_client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["database"] == "connected"
        assert body["provider"] == "available"

    @pytest.mark.asyncio
    async def test_open_circuit_degrades_health(self, test_client, kyc_provider):
        kyc_provider.health_check.return_value = False

        body = (await test_client.get("/health")).json()

        assert body["status"] == "degraded"
        assert body["provider"] == "unavailable"


class TestReferences:
    @pytest.mark.asyncio
    async def test_add_list_and_complete(self, test_client, login):
        session = await login(PHONE)
        headers = session["headers"]

        for mobile in ("9123456780", "9123456781"):
            added = await test_client.post("/api/references", json=_reference(mobile), headers=headers)
            assert added.status_code == 201

        listing = (await test_client.get("/api/references", headers=headers)).json()
        assert listing["count"] == 2
        assert listing["required"] == 2
        assert listing["isComplete"] is True
        assert listing["references"][0]["verified"] is False

        completed = await test_client.post("/api/references/complete", headers=headers)
        assert completed.status_code == 200
        assert completed.json()["nextStep"] == "kyc"

        app = (await test_client.get("/api/application", headers=headers)).json()["application"]
        assert app["completedSteps"]["references"] is True

    @pytest.mark.asyncio
    async def test_complete_requires_two(self, test_client, login):
        session = await login(PHONE)
        await test_client.post("/api/references", json=_reference("9123456780"), headers=session["headers"])

        response = await test_client.post("/api/references/complete", headers=session["headers"])

        assert response.status_code == 400
        assert response.json()["error"] == "Please add at least 2 references to continue"

    @pytest.mark.asyncio
    async def test_cannot_add_self(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.post("/api/references", json=_reference(PHONE), headers=session["headers"])

        assert response.status_code == 400
        assert response.json()["error"] == "You cannot add yourself as a reference"

    @pytest.mark.asyncio
    async def test_duplicate_mobile_rejected(self, test_client, login):
        session = await login(PHONE)
        headers = session["headers"]
        await test_client.post("/api/references", json=_reference("9123456780"), headers=headers)

        response = await test_client.post(
            "/api/references", json=_reference("9123456780", name="Other Person"), headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "A reference with this mobile number already exists"

    @pytest.mark.asyncio
    async def test_maximum_five(self, test_client, login):
        session = await login(PHONE)
        headers = session["headers"]
        for i in range(5):
            await test_client.post("/api/references", json=_reference(f"912345678{i}"), headers=headers)

        response = await test_client.post("/api/references", json=_reference("9123456789"), headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Maximum 5 references allowed"

    @pytest.mark.asyncio
    async def test_update_may_keep_its_own_mobile(self, test_client, login):
        session = await login(PHONE)
        headers = session["headers"]
        await test_client.post("/api/references", json=_reference("9123456780"), headers=headers)

        response = await test_client.put(
            "/api/references/0", json=_reference("9123456780", name="Ravi K"), headers=headers
        )

        assert response.status_code == 200
        assert response.json()["references"][0]["name"] == "Ravi K"

    @pytest.mark.asyncio
    async def test_delete_and_missing_index(self, test_client, login):
        session = await login(PHONE)
        headers = session["headers"]
        await test_client.post("/api/references", json=_reference("9123456780"), headers=headers)

        deleted = await test_client.delete("/api/references/0", headers=headers)
        missing = await test_client.delete("/api/references/0", headers=headers)
        malformed = await test_client.delete("/api/references/abc", headers=headers)

        assert deleted.status_code == 200
        assert deleted.json()["count"] == 0
        assert missing.status_code == 404
        assert missing.json()["error"] == "Reference not found"
        assert malformed.status_code == 400
