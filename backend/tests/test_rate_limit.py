"""
DSA Onboarding Backend — Rate Limiter Tests
=============================================

What:  Fixed-window counters (InMemoryCounterStore) and the limiter tiers as
       seen through the API.
"""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dsa_onboarding.config import settings
from dsa_onboarding.middleware.rate_limit import InMemoryCounterStore, RedisCounterStore, set_counter_store


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryCounterStore:
    @pytest.mark.asyncio
    async def test_counts_within_one_window(self):
        store = InMemoryCounterStore(clock=FakeClock(120.0))

        states = [await store.increment("otp:9876543210", 60) for _ in range(3)]

        assert [s.count for s in states] == [1, 2, 3]
        assert states[-1].reset_at == 180.0

    @pytest.mark.asyncio
    async def test_counter_resets_at_window_boundary(self):
        clock = FakeClock(119.0)
        store = InMemoryCounterStore(clock=clock)

        await store.increment("k", 60)
        await store.increment("k", 60)
        clock.now = 120.0
        state = await store.increment("k", 60)

        assert state.count == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        store = InMemoryCounterStore(clock=FakeClock())

        await store.increment("a", 60)
        state = await store.increment("b", 60)

        assert state.count == 1

    @pytest.mark.asyncio
    async def test_reset_drops_everything(self):
        store = InMemoryCounterStore(clock=FakeClock())
        await store.increment("a", 60)

        await store.reset()

        assert (await store.increment("a", 60)).count == 1


class TestLimiterTiers:
    @pytest.fixture(autouse=True)
    def frozen_window(self, counter_store):
        """Pin the clock so a run never straddles a window boundary."""
        set_counter_store(InMemoryCounterStore(clock=FakeClock(time.time())))

    @pytest.mark.asyncio
    async def test_fourth_send_otp_for_same_phone_is_rejected(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "trust_proxy", True)
        for i in range(3):
            ok = await test_client.post(
                "/api/auth/send-otp",
                json={"phone": "9876543210"},
                headers={"X-Forwarded-For": f"10.0.0.{i}"},
            )
            assert ok.status_code == 200

        blocked = await test_client.post(
            "/api/auth/send-otp",
            json={"phone": "9876543210"},
            headers={"X-Forwarded-For": "10.0.0.99"},
        )

        assert blocked.status_code == 429
        body = blocked.json()
        assert body["success"] is False
        assert body["code"] == "OTP_RATE_LIMIT"
        assert body["retryAfter"] == 60
        assert "Retry-After" in blocked.headers
        assert blocked.headers["RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_other_phone_is_unaffected(self, test_client):
        for _ in range(4):
            await test_client.post("/api/auth/send-otp", json={"phone": "9876543210"})

        response = await test_client.post("/api/auth/send-otp", json={"phone": "9123456780"})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_rate_limit_headers_on_success(self, test_client):
        response = await test_client.post("/api/auth/send-otp", json={"phone": "9876543210"})

        assert response.headers["RateLimit-Limit"] == "3"
        assert response.headers["RateLimit-Remaining"] == "2"
        assert int(response.headers["RateLimit-Reset"]) <= 60


    @pytest.mark.asyncio
    async def test_padded_phone_shares_the_counter(self, test_client):
        statuses = []
        for spaces in range(6):
            response = await test_client.post("/api/auth/send-otp", json={"phone": " " * spaces + "9876543210"})
            statuses.append(response.status_code)

        assert statuses == [200, 200, 200, 429, 429, 429]

    @pytest.mark.asyncio
    async def test_numeric_phone_shares_the_counter(self, test_client):
        for _ in range(3):
            await test_client.post("/api/auth/send-otp", json={"phone": "9876543210 "})

        response = await test_client.post("/api/auth/send-otp", json={"phone": 9876543210})

        assert response.status_code == 429


class _ScanIter:
    def __init__(self, keys):
        self.keys = list(keys)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.keys:
            raise StopAsyncIteration
        return self.keys.pop(0)


class TestRedisCounterStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        client.delete = AsyncMock()
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[4, True])
        client.pipeline.return_value.__aenter__.return_value = pipe
        self.pipe = pipe
        return client

    @pytest.fixture
    def store(self, client):
        store = RedisCounterStore("redis://localhost:6379/0", prefix="rl")
        store._redis = client
        return store

    @pytest.mark.asyncio
    async def test_increment_and_expire_in_one_transaction(self, store, client):
        with patch("dsa_onboarding.middleware.rate_limit.time") as fake_time:
            fake_time.time.return_value = 125.0
            state = await store.increment("otp:9876543210", 60)

        client.pipeline.assert_called_once_with(transaction=True)
        self.pipe.incr.assert_called_once_with("rl:otp:9876543210:120")
        self.pipe.expire.assert_called_once_with("rl:otp:9876543210:120", 60)
        assert state.count == 4
        assert state.reset_at == 180.0

    @pytest.mark.asyncio
    async def test_reset_deletes_prefixed_keys(self, store, client):
        client.scan_iter = MagicMock(return_value=_ScanIter(["rl:a:0", "rl:b:0"]))

        await store.reset()

        client.scan_iter.assert_called_once_with(match="rl:*")
        assert [c.args[0] for c in client.delete.await_args_list] == ["rl:a:0", "rl:b:0"]

    @pytest.mark.asyncio
    async def test_close_closes_the_client(self, store, client):
        await store.close()

        client.aclose.assert_awaited_once()
