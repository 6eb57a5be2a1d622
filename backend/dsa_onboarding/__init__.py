"""
DSA Onboarding Backend — Application Package
==============================================

What: KYC onboarding API for Direct Selling Agent entities (individual,
      proprietorship, partnership, company).
Who:  Imported by uvicorn (`dsa_onboarding.main:app`), Alembic and pytest.

Layering:

    ┌─────────────────────────────────────┐
    │   Routes (API Layer)                │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Middleware / Dependencies         │  ← auth, validation, rate limit, audit
    ├─────────────────────────────────────┤
    │   Services (Business Logic)         │  ← OTP, tokens, steps, providers
    ├─────────────────────────────────────┤
    │   Models & Schemas (Data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database (Persistence)            │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
