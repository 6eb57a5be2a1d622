"""
DSA Onboarding Backend — Test Configuration (conftest.py)
===========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   The environment is pointed at a throwaway SQLite database (aiosqlite)
       and a temporary storage root BEFORE any dsa_onboarding import, so the
       settings singleton and the module-level engine pick them up.

Fixture Hierarchy:
    Autouse (every test):
    └── counter_store: fresh in-memory rate-limit counters

    Function-scoped:
    ├── database: creates every table, drops them afterwards
    ├── test_client: HTTPX AsyncClient bound to the ASGI app
    ├── kyc_provider: AsyncMock KycProvider injected via dependency_overrides
    ├── login: helper that runs send-otp + verify-otp and returns the session
    ├── mock_db_session: AsyncMock session for pure service tests
    └── make_application: unsaved Application factory
"""

import os
import tempfile
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

_TEST_DIR = tempfile.mkdtemp(prefix="dsa_onboarding_test_")

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_DIR, "storage")
os.environ["JWT_SECRET"] = "test-secret-with-enough-length-for-hs256-signing"
os.environ["SIMULATE_OTP"] = "true"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

from dsa_onboarding.database import Base, engine  # noqa: E402
from dsa_onboarding.middleware.rate_limit import InMemoryCounterStore, set_counter_store  # noqa: E402
from dsa_onboarding.models import Application  # noqa: E402
from dsa_onboarding.services.provider_base import KycProvider  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Infrastructure
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def counter_store():
    store = InMemoryCounterStore()
    set_counter_store(store)
    yield store
    set_counter_store(None)


@pytest_asyncio.fixture
async def database():
    """Fresh schema per test; pooled connections are dropped with it."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_client(database):
    """
    HTTPX AsyncClient talking to the FastAPI app through ASGITransport.

    BackgroundTasks (audit writes, file cleanup) complete before the
    response is returned to the test.
    """
    from dsa_onboarding.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def kyc_provider():
    """An AsyncMock provider; tests set return values per endpoint."""
    from dsa_onboarding.main import app
    from dsa_onboarding.services.sandbox_service import get_kyc_provider

    provider = AsyncMock(spec=KycProvider)
    app.dependency_overrides[get_kyc_provider] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_kyc_provider, None)


@pytest.fixture
def login(test_client):
    """
    Logs a phone in through the public API.

    Usage:
        session = await login("9876543210", entity_type="company")
        headers = session["headers"]
    """

    async def _login(phone: str = "9876543210", entity_type: str = "individual", **extra) -> Dict[str, Any]:
        sent = await test_client.post("/api/auth/send-otp", json={"phone": phone})
        assert sent.status_code == 200, sent.text
        body = {"phone": phone, "otp": sent.json()["otp"], "entityType": entity_type, **extra}
        verified = await test_client.post("/api/auth/verify-otp", json=body)
        assert verified.status_code == 200, verified.text
        data = verified.json()
        data["headers"] = {"Authorization": f"Bearer {data['accessToken']}"}
        return data

    return _login


# ══════════════════════════════════════════════════════════════════════════
# Service-Level Helpers
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """AsyncMock session for service tests that never touch SQL."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def make_application():
    def _make(entity_type: str = "individual", phone: str = "9876543210", **fields) -> Application:
        app = Application.start(phone=phone, entity_type=entity_type)
        for key, value in fields.items():
            setattr(app, key, value)
        return app

    return _make


@pytest.fixture
def sample_jpeg_bytes():
    """SOI + JFIF header + EOI: the smallest thing libmagic calls image/jpeg."""
    return (
        b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
        b"\xff\xd9"
    )
