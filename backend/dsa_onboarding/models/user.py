"""
DSA Onboarding Backend — User Model
=====================================

What:  ORM model for the `users` table: one row per phone number.
Who:   Mutated only by the authentication flow (auth_service, otp_service,
       token_service).

Secrets at rest:
    otp_hash and refresh_token_hash hold sha256 hex digests. The plain OTP
    and the opaque refresh token are only ever returned to the client.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dsa_onboarding.database import Base, new_object_id, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)

    phone: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        unique=True,
        index=True,
        comment="10-digit Indian mobile number; login identity",
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    application_id: Mapped[Optional[str]] = mapped_column(
        String(24),
        ForeignKey("applications.id", ondelete="SET NULL"),
        nullable=True,
        comment="Application currently attached to this login",
    )

    # ── Login OTP state ───────────────────────────────────────────────────
    otp_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    otp_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    otp_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    # ── Refresh credential (rotating) ─────────────────────────────────────
    refresh_token_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    refresh_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, phone='{self.phone}', verified={self.is_verified})>"
