"""
DSA Onboarding Backend — Authentication Flow Tests
====================================================

What:  Phone + OTP login, lockout, token refresh rotation, logout and /me,
       exercised end to end through the API against SQLite.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from dsa_onboarding.config import settings
from dsa_onboarding.database import async_session_factory, utcnow
from dsa_onboarding.models import User
from dsa_onboarding.services import otp_service, token_service
from dsa_onboarding.services.otp_service import OtpOutcome
from dsa_onboarding.services.token_service import Identity

PHONE = "9876543210"


def _wrong(otp: str) -> str:
    return "000000" if otp != "000000" else "111111"


async def _update_user(phone: str, **values) -> None:
    async with async_session_factory() as session:
        await session.execute(update(User).where(User.phone == phone).values(**values))
        await session.commit()


async def _load_user(session, phone: str) -> User:
    result = await session.execute(select(User).where(User.phone == phone))
    return result.scalar_one()


class TestSendOtp:
    @pytest.mark.asyncio
    async def test_send_otp_creates_user_and_echoes_otp(self, test_client):
        response = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "OTP sent successfully"
        assert body["phone"] == PHONE
        assert len(body["otp"]) == 6 and body["otp"].isdigit()


class TestVerifyOtp:
    @pytest.mark.asyncio
    async def test_login_starts_application(self, login):
        session = await login(PHONE, entity_type="proprietorship")

        assert session["message"] == "Login successful"
        assert session["user"]["phone"] == PHONE
        assert session["user"]["isVerified"] is True
        application = session["application"]
        assert application["entityType"] == "proprietorship"
        assert application["status"] == "kyc"
        assert application["completedSteps"]["kyc"] is False
        assert len(application["id"]) == 24

    @pytest.mark.asyncio
    async def test_second_login_reuses_open_application(self, login):
        first = await login(PHONE)
        second = await login(PHONE)

        assert first["application"]["id"] == second["application"]["id"]

    @pytest.mark.asyncio
    async def test_unknown_phone_rejected(self, test_client):
        response = await test_client.post(
            "/api/auth/verify-otp",
            json={"phone": "9123456780", "otp": "123456", "entityType": "individual"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_OTP"
        assert response.json()["error"] == "Invalid phone number or OTP"

    @pytest.mark.asyncio
    async def test_fourth_wrong_otp_is_locked_out(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        wrong = _wrong(sent.json()["otp"])
        payload = {"phone": PHONE, "otp": wrong, "entityType": "individual"}

        codes = []
        for _ in range(4):
            response = await test_client.post("/api/auth/verify-otp", json=payload)
            assert response.status_code == 401
            codes.append(response.json()["code"])

        assert codes[0] == "INVALID_OTP"
        assert codes[-1] == "OTP_LOCKED"

    @pytest.mark.asyncio
    async def test_locked_otp_rejects_even_the_correct_code(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        otp = sent.json()["otp"]
        for _ in range(3):
            await test_client.post(
                "/api/auth/verify-otp",
                json={"phone": PHONE, "otp": _wrong(otp), "entityType": "individual"},
            )

        response = await test_client.post(
            "/api/auth/verify-otp",
            json={"phone": PHONE, "otp": otp, "entityType": "individual"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "OTP_LOCKED"

    @pytest.mark.asyncio
    async def test_otp_is_single_use(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        payload = {"phone": PHONE, "otp": sent.json()["otp"], "entityType": "individual"}

        first = await test_client.post("/api/auth/verify-otp", json=payload)
        second = await test_client.post("/api/auth/verify-otp", json=payload)

        assert first.status_code == 200
        assert second.status_code == 401


class TestTokens:
    @pytest.mark.asyncio
    async def test_refresh_rotates_and_old_token_is_rejected(self, test_client, login):
        session = await login(PHONE)
        old_refresh = session["refreshToken"]

        rotated = await test_client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
        assert rotated.status_code == 200
        assert rotated.json()["refreshToken"] != old_refresh

        reused = await test_client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
        assert reused.status_code == 401
        assert reused.json()["code"] == "INVALID_REFRESH_TOKEN"

    @pytest.mark.asyncio
    async def test_logout_revokes_refresh_token(self, test_client, login):
        session = await login(PHONE)

        logout = await test_client.post("/api/auth/logout", headers=session["headers"])
        assert logout.status_code == 200
        assert logout.json()["message"] == "Logged out successfully"

        refresh = await test_client.post(
            "/api/auth/refresh-token", json={"refreshToken": session["refreshToken"]}
        )
        assert refresh.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_token_is_rejected(self, test_client):
        response = await test_client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["code"] == "NO_TOKEN"

    @pytest.mark.asyncio
    async def test_garbage_token_is_rejected(self, test_client):
        response = await test_client.get(
            "/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    def test_access_token_round_trip(self):
        identity = Identity(user_id="a" * 24, phone=PHONE, application_id="b" * 24)

        decoded = token_service.decode_access_token(token_service.create_access_token(identity))

        assert decoded == identity


class TestMe:
    @pytest.mark.asyncio
    async def test_me_returns_user_and_snapshot(self, test_client, login):
        session = await login(PHONE)

        response = await test_client.get("/api/auth/me", headers=session["headers"])

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["phone"] == PHONE
        assert body["application"]["id"] == session["application"]["id"]
        assert body["application"]["nextStep"] == "kyc"


class TestOtpService:
    def test_hash_is_not_the_plain_value(self):
        from dsa_onboarding.models import User

        user = User(phone=PHONE)
        otp = otp_service.set_otp(user)

        assert user.otp_hash != otp
        assert len(user.otp_hash) == 64
        assert user.otp_attempts == 0


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_otp_is_rejected(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        await _update_user(PHONE, otp_expires_at=utcnow() - timedelta(seconds=1))

        response = await test_client.post(
            "/api/auth/verify-otp",
            json={"phone": PHONE, "otp": sent.json()["otp"], "entityType": "individual"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "OTP_EXPIRED"

    @pytest.mark.asyncio
    async def test_expired_refresh_token_is_rejected(self, test_client, login):
        session = await login(PHONE)
        await _update_user(PHONE, refresh_token_expires_at=utcnow() - timedelta(seconds=1))

        response = await test_client.post(
            "/api/auth/refresh-token", json={"refreshToken": session["refreshToken"]}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "REFRESH_TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_expired_access_token_is_rejected(self, test_client, login, monkeypatch):
        monkeypatch.setattr(settings, "access_token_expire_seconds", -10)
        session = await login(PHONE)

        response = await test_client.get("/api/auth/me", headers=session["headers"])

        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_EXPIRED"


class TestParallelGuesses:
    """Two requests that loaded the same user row before either one wrote."""

    @pytest.mark.asyncio
    async def test_stale_reader_cannot_use_an_attempt_already_spent(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        otp = sent.json()["otp"]
        await _update_user(PHONE, otp_attempts=settings.otp_max_attempts - 1)

        async with async_session_factory() as first, async_session_factory() as second:
            user_a = await _load_user(first, PHONE)
            user_b = await _load_user(second, PHONE)

            assert await otp_service.check_otp(first, user_a, _wrong(otp)) is OtpOutcome.LOCKED
            await first.commit()

            assert await otp_service.check_otp(second, user_b, otp) is OtpOutcome.LOCKED
            await second.commit()

    @pytest.mark.asyncio
    async def test_wrong_guesses_are_counted_in_the_database(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        wrong = _wrong(sent.json()["otp"])

        async with async_session_factory() as first, async_session_factory() as second:
            user_a = await _load_user(first, PHONE)
            user_b = await _load_user(second, PHONE)

            assert await otp_service.check_otp(first, user_a, wrong) is OtpOutcome.INVALID
            await first.commit()
            assert await otp_service.check_otp(second, user_b, wrong) is OtpOutcome.INVALID
            await second.commit()

            assert user_b.otp_attempts == 2

    @pytest.mark.asyncio
    async def test_correct_code_is_consumed_once(self, test_client):
        sent = await test_client.post("/api/auth/send-otp", json={"phone": PHONE})
        otp = sent.json()["otp"]

        async with async_session_factory() as first, async_session_factory() as second:
            user_a = await _load_user(first, PHONE)
            user_b = await _load_user(second, PHONE)

            assert await otp_service.check_otp(first, user_a, otp) is OtpOutcome.VALID
            await first.commit()
            assert await otp_service.check_otp(second, user_b, otp) is OtpOutcome.MISSING
