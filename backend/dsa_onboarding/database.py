"""
DSA Onboarding Backend — Database Session Management
======================================================

What:  Async SQLAlchemy engine, session factory, declarative base and the
       FastAPI session dependency.
How:   Creates an async engine with connection pooling, provides a session
       dependency that auto-commits on success and auto-rolls-back on error.
Who:   Route handlers via Depends(get_db_session); the audit recorder opens
       its own sessions from async_session_factory.
When:  Engine is created at module import; sessions are created per-request.

Connection Pooling:
    pool_size / max_overflow come from settings for PostgreSQL (asyncpg).
    SQLite (used by the test suite through aiosqlite) gets SQLAlchemy's
    default pool, which does not accept the sizing arguments.
"""

import secrets
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dsa_onboarding.config import settings
from dsa_onboarding.exceptions import MalformedIdError
from dsa_onboarding.schemas.validators import OBJECT_ID_RE


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return kwargs


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit, which the
# routes rely on when they serialize a model after the service committed.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Base class for all ORM models (shared metadata for Alembic)."""
    pass


# ── Identifiers & Timestamps ──────────────────────────────────────────────
def new_object_id() -> str:
    """24 lowercase hex characters; the id format every table uses."""
    return secrets.token_hex(12)


def ensure_object_id(value: str) -> str:
    """Raises MalformedIdError (→ 400 INVALID_ID) for anything but a 24-hex id."""
    if not isinstance(value, str) or not OBJECT_ID_RE.match(value):
        raise MalformedIdError(value)
    return value.lower()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global error handler
        5. Always: closes the session (returns connection to pool)

    Services that must persist state before raising (e.g. the OTP attempt
    counter) commit explicitly; the rollback afterwards is then a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Closes all pooled connections; called from the lifespan shutdown."""
    await engine.dispose()
