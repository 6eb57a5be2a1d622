"""
DSA Onboarding Backend — Audit Log Model
==========================================

What:  Append-only compliance record of one request/response pair.
Who:   Written only by middleware.audit.record_audit(); never updated or
       deleted by the application.

Payloads are stored after redaction (see middleware.audit.sanitize).
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from dsa_onboarding.database import Base, new_object_id, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)

    user_id: Mapped[Optional[str]] = mapped_column(String(24), nullable=True, index=True)
    application_id: Mapped[Optional[str]] = mapped_column(String(24), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)

    action: Mapped[str] = mapped_column(String(300), nullable=False, comment="METHOD path")
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, comment="success | failure")

    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(String(255), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    request_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_audit_logs_created_at", created_at.desc()),
        Index("idx_audit_logs_category_created_at", "category", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', status='{self.status}')>"
