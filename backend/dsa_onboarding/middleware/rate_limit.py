"""
DSA Onboarding Backend — Rate Limiting
========================================

What:  Fixed-window request counters per caller, applied as FastAPI
       dependencies on routers and individual routes.
How:   A RateLimiter increments `<tier>:<key>` in the injected CounterStore
       for the current window. Once the count exceeds the tier maximum it
       raises TooManyRequestsError (429) before the handler runs; business
       state is never touched. Every response from a limited route carries
       RateLimit-Limit / RateLimit-Remaining / RateLimit-Reset.

Algorithm: Fixed Window Counter
    window_start = floor(now / window) * window
    count = INCR("<tier>:<key>:<window_start>")
    reject when count > max
    At most `max` requests per key are accepted in any one window; counters
    reset at the boundary.

Counter stores:
    InMemoryCounterStore  single process; asyncio.Lock makes increment-and-read
                          atomic; expired windows are pruned periodically
    RedisCounterStore     INCR + EXPIRE in one MULTI/EXEC pipeline; shared by
                          all workers. Selected when REDIS_URL is set.

Tiers (defaults, see config):
    general  100 / 15 min  identity key       every /api router
    auth      10 / 15 min  identity key       verify-otp, refresh-token
    otp        3 / 1 min   phone key          send-otp (body carries retryAfter)
    kyc       20 / 5 min   identity key       provider-backed lookups
"""

import abc
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from fastapi import Request, Response

from dsa_onboarding.config import settings
from dsa_onboarding.exceptions import TooManyRequestsError
from dsa_onboarding.middleware.auth import peek_identity
from dsa_onboarding.middleware.validation import read_json_body
from dsa_onboarding.schemas.validators import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowState:
    count: int
    reset_at: float  # epoch seconds when the current window ends


# ══════════════════════════════════════════════════════════════════════════
# Counter Stores
# ══════════════════════════════════════════════════════════════════════════

class CounterStore(abc.ABC):
    """Atomic per-key fixed-window counter."""

    @abc.abstractmethod
    async def increment(self, key: str, window_seconds: int) -> WindowState:
        """Count one hit for `key` in the current window and return the total."""

    @abc.abstractmethod
    async def reset(self) -> None:
        """Drop every counter."""

    async def close(self) -> None:
        return None


def _window_start(now: float, window_seconds: int) -> int:
    return int(now // window_seconds) * window_seconds


class InMemoryCounterStore(CounterStore):
    """Process-local store; safe for a single uvicorn worker."""

    CLEANUP_EVERY = 1000

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = asyncio.Lock()
        # key → (window_start, window_seconds, count)
        self._counters: Dict[str, Tuple[int, int, int]] = {}
        self._hits = 0

    async def increment(self, key: str, window_seconds: int) -> WindowState:
        async with self._lock:
            now = self._clock()
            start = _window_start(now, window_seconds)
            current = self._counters.get(key)
            if current is None or current[0] != start:
                count = 1
            else:
                count = current[2] + 1
            self._counters[key] = (start, window_seconds, count)

            self._hits += 1
            if self._hits % self.CLEANUP_EVERY == 0:
                self._prune(now)

            return WindowState(count=count, reset_at=float(start + window_seconds))

    def _prune(self, now: float) -> None:
        expired = [k for k, (start, window, _) in self._counters.items() if start + window <= now]
        for key in expired:
            del self._counters[key]
        if expired:
            logger.debug("Pruned %d expired rate-limit windows", len(expired))

    async def reset(self) -> None:
        async with self._lock:
            self._counters.clear()
            self._hits = 0


class RedisCounterStore(CounterStore):
    """Shared counters in Redis; the window start is part of the key."""

    def __init__(self, url: str, prefix: str = "ratelimit"):
        self._redis = redis.from_url(url, decode_responses=True)
        self._prefix = prefix

    async def increment(self, key: str, window_seconds: int) -> WindowState:
        start = _window_start(time.time(), window_seconds)
        redis_key = f"{self._prefix}:{key}:{start}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.expire(redis_key, window_seconds)
            count, _ = await pipe.execute()
        return WindowState(count=int(count), reset_at=float(start + window_seconds))

    async def reset(self) -> None:
        async for redis_key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            await self._redis.delete(redis_key)

    async def close(self) -> None:
        await self._redis.aclose()


_store: Optional[CounterStore] = None


def get_counter_store() -> CounterStore:
    global _store
    if _store is None:
        if settings.redis_url:
            logger.info("Rate limiting backed by Redis")
            _store = RedisCounterStore(settings.redis_url)
        else:
            _store = InMemoryCounterStore()
    return _store


def set_counter_store(store: Optional[CounterStore]) -> None:
    """Swap the store (tests, or a custom distributed backend)."""
    global _store
    _store = store


async def close_counter_store() -> None:
    if _store is not None:
        await _store.close()


# ══════════════════════════════════════════════════════════════════════════
# Key Functions
# ══════════════════════════════════════════════════════════════════════════

KeyFunc = Callable[[Request], Awaitable[str]]


def client_ip(request: Request) -> str:
    if settings.trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def identity_key(request: Request) -> str:
    """user:<id> for a valid bearer token, ip:<address> otherwise."""
    identity = peek_identity(request)
    if identity is not None:
        return f"user:{identity.user_id}"
    return f"ip:{client_ip(request)}"


async def phone_key(request: Request) -> str:
    """
    otp:<phone> from the path params or JSON body; falls back to identity_key.

    The value is normalized exactly as the Phone field does, so padded or
    numeric spellings of one number share a counter.
    """
    raw = request.path_params.get("phone")
    if raw is None:
        body = await read_json_body(request)
        if isinstance(body, dict):
            raw = body.get("phone")
    phone = normalize_phone(raw)
    if phone:
        return f"otp:{phone}"
    return await identity_key(request)


# ══════════════════════════════════════════════════════════════════════════
# Limiter Dependency
# ══════════════════════════════════════════════════════════════════════════

class RateLimiter:
    """
    A named tier used as a FastAPI dependency.

    Window and maximum are read from settings on every call
    (RATE_LIMIT_<TIER>_WINDOW / RATE_LIMIT_<TIER>_MAX).
    """

    def __init__(
        self,
        tier: str,
        key_func: KeyFunc = identity_key,
        message: str = "Too many requests. Please try again later.",
        code: str = "RATE_LIMIT_EXCEEDED",
        include_retry_hint: bool = False,
    ):
        self.tier = tier
        self.key_func = key_func
        self.message = message
        self.code = code
        self.include_retry_hint = include_retry_hint

    async def __call__(self, request: Request, response: Response) -> None:
        window_seconds, max_requests = settings.rate_limit_for(self.tier)
        key = await self.key_func(request)
        state = await get_counter_store().increment(f"{self.tier}:{key}", window_seconds)

        reset_in = max(0, math.ceil(state.reset_at - time.time()))
        headers = {
            "RateLimit-Limit": str(max_requests),
            "RateLimit-Remaining": str(max(0, max_requests - state.count)),
            "RateLimit-Reset": str(reset_in),
        }

        if state.count > max_requests:
            logger.warning(
                "Rate limit exceeded: tier=%s key=%s count=%d max=%d window=%ds",
                self.tier,
                key,
                state.count,
                max_requests,
                window_seconds,
            )
            extra = {"retryAfter": window_seconds} if self.include_retry_hint else None
            raise TooManyRequestsError(
                self.message,
                code=self.code,
                retry_after=reset_in or window_seconds,
                headers=headers,
                extra=extra,
            )

        response.headers.update(headers)


general_limiter = RateLimiter("general")
auth_limiter = RateLimiter(
    "auth",
    message="Too many authentication attempts. Please try again later.",
)
otp_limiter = RateLimiter(
    "otp",
    key_func=phone_key,
    message="Too many OTP requests. Please wait before trying again.",
    code="OTP_RATE_LIMIT",
    include_retry_hint=True,
)
kyc_limiter = RateLimiter(
    "kyc",
    message="Too many verification requests. Please try again later.",
)
