"""
DSA Onboarding Backend — Application Service
==============================================

What:  Reads and mutates the caller's onboarding application: snapshot,
       step overview, status summary, entity-type change, references and
       the agreement sign-off.
How:   The application is resolved from the access-token identity (falling
       back to the user row when the token predates the application). Step
       flags are set through Application.mark_step(); the status follows
       automatically on flush.
Who:   routes/application.py, routes/references.py, routes/agreement.py and
       the other services that need the caller's application.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.constants import (
    COMPANY_SUB_TYPES,
    MAX_REFERENCES,
    MIN_REFERENCES,
    STEP_NAMES,
)
from dsa_onboarding.database import ensure_object_id, utcnow
from dsa_onboarding.exceptions import BadRequestError, NotFoundError
from dsa_onboarding.models.application import Application
from dsa_onboarding.models.user import User
from dsa_onboarding.schemas.application import EntityTypeUpdate, ReferenceInput
from dsa_onboarding.services.token_service import Identity

logger = logging.getLogger(__name__)


def mask_account_number(number: str) -> str:
    """Everything but the last four characters becomes '*'."""
    if not number:
        return number
    return "*" * max(0, len(number) - 4) + number[-4:]


def mask_pan(pan: Optional[str]) -> Optional[str]:
    """ABCPE1234F -> ABCP****F"""
    if not pan:
        return None
    return f"{pan[:4]}****{pan[-1]}"


def application_snapshot(app: Application) -> Dict[str, Any]:
    bank = copy.deepcopy(dict(app.bank)) if app.bank else None
    if bank and bank.get("accountNumber"):
        bank["accountNumber"] = mask_account_number(bank["accountNumber"])

    return {
        "id": app.id,
        "entity_type": app.entity_type,
        "company_sub_type": app.company_sub_type,
        "status": app.status,
        "completed_steps": dict(app.completed_steps or {}),
        "phone": app.phone,
        "email": app.email,
        "kyc": dict(app.kyc or {}),
        "bank": bank,
        "references": list(app.references or []),
        "documents": list(app.documents or []),
        "partners": list(app.partners or []),
        "company": dict(app.company) if app.company else None,
        "agreement": dict(app.agreement) if app.agreement else None,
        "next_step": app.next_step(),
        "created_at": app.created_at,
        "updated_at": app.updated_at,
    }


class ApplicationService:
    """Business logic for /api/application, /api/references and /api/agreement."""

    async def get_application(self, db: AsyncSession, identity: Identity) -> Application:
        application_id = identity.application_id
        if not application_id:
            user = await db.get(User, ensure_object_id(identity.user_id))
            application_id = user.application_id if user else None
        if not application_id:
            raise NotFoundError("No application found. Please start onboarding.")

        app = await db.get(Application, ensure_object_id(application_id))
        if app is None:
            raise NotFoundError("Application not found")
        return app

    # ── Overview ──────────────────────────────────────────────────────────
    def steps(self, app: Application) -> Dict[str, Any]:
        current = app.next_step()
        details = []
        for order, step in enumerate(app.steps, start=1):
            completed = app.is_step_completed(step)
            is_current = step == current
            details.append(
                {
                    "id": step,
                    "name": STEP_NAMES.get(step, step),
                    "order": order,
                    "completed": completed,
                    "current": is_current,
                    "locked": not completed and not is_current,
                }
            )
        return {
            "steps": details,
            "current_step": current,
            "total_steps": len(details),
            "completed_count": sum(1 for d in details if d["completed"]),
        }

    def status(self, app: Application) -> Dict[str, Any]:
        total = len(app.steps)
        completed = sum(1 for step in app.steps if app.is_step_completed(step))
        return {
            "status": app.status,
            "entity_type": app.entity_type,
            "progress": round(completed / total * 100) if total else 0,
            "completed_steps": completed,
            "total_steps": total,
            "next_step": app.next_step(),
        }

    async def change_entity_type(
        self, db: AsyncSession, app: Application, payload: EntityTypeUpdate
    ) -> Application:
        if any((app.completed_steps or {}).values()):
            raise BadRequestError("Cannot change entity type after completing steps")

        app.entity_type = payload.entity_type
        if payload.entity_type == "company":
            app.company_sub_type = payload.company_sub_type or COMPANY_SUB_TYPES[0]
        else:
            app.company_sub_type = None
        await db.flush()

        logger.info("Entity type changed: %s -> %s", app.id, app.entity_type)
        return app

    # ══════════════════════════════════════════════════════════════════════
    # References
    # ══════════════════════════════════════════════════════════════════════

    def _check_reference(
        self, app: Application, payload: ReferenceInput, skip_index: int = -1
    ) -> None:
        if payload.mobile == app.phone:
            raise BadRequestError("You cannot add yourself as a reference")
        for i, existing in enumerate(app.references or []):
            if i != skip_index and existing.get("mobile") == payload.mobile:
                raise BadRequestError("A reference with this mobile number already exists")

    def _reference_record(self, payload: ReferenceInput) -> Dict[str, Any]:
        return {
            "name": payload.name.strip(),
            "mobile": payload.mobile,
            "email": payload.email,
            "address": payload.address.strip(),
            "verified": False,
            "addedAt": utcnow().isoformat(),
        }

    def list_references(self, app: Application) -> Dict[str, Any]:
        references = list(app.references or [])
        return {
            "references": references,
            "count": len(references),
            "required": MIN_REFERENCES,
            "is_complete": len(references) >= MIN_REFERENCES,
        }

    async def add_reference(
        self, db: AsyncSession, app: Application, payload: ReferenceInput
    ) -> List[Dict[str, Any]]:
        if len(app.references or []) >= MAX_REFERENCES:
            raise BadRequestError(f"Maximum {MAX_REFERENCES} references allowed")
        self._check_reference(app, payload)

        app.references.append(self._reference_record(payload))
        await db.flush()
        logger.info("Reference added to application %s (%d total)", app.id, len(app.references))
        return list(app.references)

    async def update_reference(
        self, db: AsyncSession, app: Application, index: int, payload: ReferenceInput
    ) -> List[Dict[str, Any]]:
        if index >= len(app.references or []):
            raise NotFoundError("Reference not found")
        self._check_reference(app, payload, skip_index=index)

        app.references[index] = self._reference_record(payload)
        await db.flush()
        return list(app.references)

    async def delete_reference(
        self, db: AsyncSession, app: Application, index: int
    ) -> List[Dict[str, Any]]:
        if index >= len(app.references or []):
            raise NotFoundError("Reference not found")

        removed = app.references.pop(index)
        await db.flush()
        logger.info("Reference %s removed from application %s", removed.get("mobile"), app.id)
        return list(app.references)

    async def complete_references(self, db: AsyncSession, app: Application) -> str:
        if len(app.references or []) < MIN_REFERENCES:
            raise BadRequestError(
                f"Please add at least {MIN_REFERENCES} references to continue"
            )
        app.mark_step("references")
        await db.flush()
        return app.next_step()

    # ── Agreement ─────────────────────────────────────────────────────────
    def pending_before_agreement(self, app: Application) -> List[str]:
        return [s for s in app.steps if s != "agreement" and not app.is_step_completed(s)]

    def agreement_status(self, app: Application) -> Dict[str, Any]:
        agreement = app.agreement or {}
        pending = self.pending_before_agreement(app)
        return {
            "ready_to_sign": not pending,
            "pending_steps": pending,
            "signed": bool(agreement.get("signedAt")),
            "signed_at": agreement.get("signedAt"),
            "complete": app.is_step_completed("agreement"),
        }

    async def mark_agreement_signed(self, db: AsyncSession, app: Application) -> Application:
        """Records the signature and closes the application; no e-sign provider is involved."""
        if app.is_step_completed("agreement"):
            raise BadRequestError("Agreement already signed")
        pending = self.pending_before_agreement(app)
        if pending:
            names = ", ".join(STEP_NAMES.get(s, s) for s in pending)
            raise BadRequestError(f"Please complete these steps first: {names}")

        now = utcnow()
        app.agreement = {**(app.agreement or {}), "signedAt": now.isoformat()}
        app.mark_step("agreement")
        app.completed_at = now
        await db.flush()
        logger.info("Agreement signed for application %s", app.id)
        return app


application_service = ApplicationService()
