"""
DSA Onboarding Backend — Application Model
============================================

What:  ORM model for the `applications` table: one row per onboarding attempt.
How:   Step completion lives in `completed_steps` (JSON flags); nested KYC,
       bank, company and document data live in JSON sub-documents.
       `status` is derived: before every insert/update it is set to the
       next incomplete step for the entity type, unless terminal.

Invariant:
    A phone has at most one non-terminal application. The partial unique
    index `uq_applications_open_phone` enforces it in the database; the auth
    service reuses the open application on every login.

JSON columns:
    Dict columns are MutableDict and list columns MutableList so top-level
    assignments (app.kyc["pan"] = {...}) are tracked. Nested values are
    always replaced wholesale, never mutated in place.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, event, text
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import Mapped, mapped_column

from dsa_onboarding.constants import ENTITY_STEPS, STEP_KEYS, TERMINAL_STATUSES
from dsa_onboarding.database import Base, new_object_id, utcnow


def default_completed_steps() -> Dict[str, bool]:
    return {key: False for key in STEP_KEYS}


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, default="individual")
    company_sub_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="initiated",
        server_default=text("'initiated'"),
    )
    completed_steps: Mapped[Dict[str, bool]] = mapped_column(
        MutableDict.as_mutable(JSON), nullable=False, default=default_completed_steps
    )

    phone: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # ── Nested sub-documents ──────────────────────────────────────────────
    kyc: Mapped[Dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    bank: Mapped[Optional[Dict[str, Any]]] = mapped_column(MutableDict.as_mutable(JSON), nullable=True)
    references: Mapped[List[Dict[str, Any]]] = mapped_column(
        MutableList.as_mutable(JSON), nullable=False, default=list
    )
    documents: Mapped[List[Dict[str, Any]]] = mapped_column(
        MutableList.as_mutable(JSON), nullable=False, default=list
    )
    partners: Mapped[List[Dict[str, Any]]] = mapped_column(
        MutableList.as_mutable(JSON), nullable=False, default=list
    )
    company: Mapped[Optional[Dict[str, Any]]] = mapped_column(MutableDict.as_mutable(JSON), nullable=True)
    agreement: Mapped[Optional[Dict[str, Any]]] = mapped_column(MutableDict.as_mutable(JSON), nullable=True)
    business: Mapped[Optional[Dict[str, Any]]] = mapped_column(MutableDict.as_mutable(JSON), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    __table_args__ = (
        Index("idx_applications_phone_status", "phone", "status"),
        Index(
            "uq_applications_open_phone",
            "phone",
            unique=True,
            postgresql_where=text("status NOT IN ('completed', 'rejected')"),
            sqlite_where=text("status NOT IN ('completed', 'rejected')"),
        ),
    )

    @classmethod
    def start(
        cls,
        phone: str,
        entity_type: str = "individual",
        company_sub_type: Optional[str] = None,
        email: Optional[str] = None,
    ) -> "Application":
        """New application with every JSON column populated up front."""
        return cls(
            id=new_object_id(),
            phone=phone,
            email=email,
            entity_type=entity_type,
            company_sub_type=company_sub_type if entity_type == "company" else None,
            status="initiated",
            completed_steps=default_completed_steps(),
            kyc={},
            references=[],
            documents=[],
            partners=[],
        )

    # ── Step progression ──────────────────────────────────────────────────
    @property
    def steps(self) -> List[str]:
        return ENTITY_STEPS.get(self.entity_type, ENTITY_STEPS["individual"])

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_step_completed(self, step: str) -> bool:
        return bool((self.completed_steps or {}).get(step))

    def next_step(self) -> str:
        """First incomplete step for the entity type, or "completed"."""
        for step in self.steps:
            if not self.is_step_completed(step):
                return step
        return "completed"

    def can_proceed_to(self, step: str) -> bool:
        """A step is unlocked once every step before it is complete."""
        if step not in self.steps:
            return False
        for previous in self.steps[: self.steps.index(step)]:
            if not self.is_step_completed(previous):
                return False
        return True

    def mark_step(self, step: str, done: bool = True) -> None:
        if self.completed_steps is None:
            self.completed_steps = default_completed_steps()
        self.completed_steps[step] = done

    def sync_status(self) -> None:
        if self.is_terminal:
            return
        self.status = self.next_step()

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, entity_type='{self.entity_type}', "
            f"status='{self.status}')>"
        )


@event.listens_for(Application, "before_insert")
@event.listens_for(Application, "before_update")
def _sync_application_status(mapper, connection, target: Application) -> None:
    target.sync_status()
