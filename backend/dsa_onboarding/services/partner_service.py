"""
DSA Onboarding Backend — Partner Service
==========================================

What:  The partners step of a partnership application: partner CRUD, a PAN
       check per partner and step completion.
How:   Partners live in the application's `partners` JSON list and are
       addressed by position. Exactly one partner is the lead while the list
       is non-empty. A partner's KYC is complete once their PAN passes the
       shared member check in verification_service without being flagged.
Who:   routes/partners.py.

Rules:
    2 to 10 partners, unique phone numbers
    first partner added becomes lead; removing the lead promotes partner 0
    completion needs every partner's KYC
"""

import logging
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.constants import MAX_PARTNERS, MIN_PARTNERS
from dsa_onboarding.database import utcnow
from dsa_onboarding.exceptions import BadRequestError, NotFoundError
from dsa_onboarding.models.application import Application
from dsa_onboarding.schemas.application import PartnerInput
from dsa_onboarding.services.application_service import mask_pan
from dsa_onboarding.services.provider_base import KycProvider
from dsa_onboarding.services.verification_service import verification_service

logger = logging.getLogger(__name__)


def _summary(partner: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": partner.get("name"),
        "phone": partner.get("phone"),
        "email": partner.get("email"),
        "isLeadPartner": bool(partner.get("isLeadPartner")),
        "kycCompleted": bool(partner.get("kycCompleted")),
        "panNumber": mask_pan(partner.get("panNumber")),
    }


class PartnerService:
    """Business logic for /api/partners."""

    def _require_partnership(self, app: Application) -> None:
        if app.entity_type != "partnership":
            raise BadRequestError("Partners only apply to Partnership entity type")

    def _check_phone(self, app: Application, phone: str, skip_index: int = -1) -> None:
        for i, existing in enumerate(app.partners or []):
            if i != skip_index and existing.get("phone") == phone:
                raise BadRequestError("Partner with this phone number already exists")

    def _get(self, app: Application, index: int) -> Dict[str, Any]:
        if index >= len(app.partners or []):
            raise NotFoundError("Partner not found")
        return app.partners[index]

    def _clear_lead(self, app: Application, keep: int = -1) -> None:
        for i, partner in enumerate(app.partners):
            if i != keep and partner.get("isLeadPartner"):
                app.partners[i] = {**partner, "isLeadPartner": False}

    def summaries(self, app: Application) -> List[Dict[str, Any]]:
        return [_summary(p) for p in app.partners or []]

    def list_partners(self, app: Application) -> Dict[str, Any]:
        self._require_partnership(app)
        partners = self.summaries(app)
        lead = next((p["name"] for p in partners if p["isLeadPartner"]), None)
        pending = sum(1 for p in partners if not p["kycCompleted"])
        return {
            "partners": partners,
            "count": len(partners),
            "lead_partner": lead,
            "kyc_pending_count": pending,
            "all_kyc_complete": pending == 0 and len(partners) > 0,
        }

    async def add_partner(self, db: AsyncSession, app: Application, payload: PartnerInput) -> None:
        self._require_partnership(app)
        if len(app.partners or []) >= MAX_PARTNERS:
            raise BadRequestError(f"Maximum {MAX_PARTNERS} partners allowed")
        self._check_phone(app, payload.phone)

        is_lead = payload.is_lead_partner or not app.partners
        if is_lead:
            self._clear_lead(app)
        app.partners.append(
            {
                "name": payload.name.strip(),
                "phone": payload.phone,
                "email": payload.email,
                "isLeadPartner": is_lead,
                "kycCompleted": False,
                "addedAt": utcnow().isoformat(),
            }
        )
        await db.flush()
        logger.info("Partner added to application %s (%d total)", app.id, len(app.partners))

    async def update_partner(
        self, db: AsyncSession, app: Application, index: int, payload: PartnerInput
    ) -> None:
        self._require_partnership(app)
        partner = self._get(app, index)
        self._check_phone(app, payload.phone, skip_index=index)

        if payload.is_lead_partner:
            self._clear_lead(app, keep=index)
        app.partners[index] = {
            **partner,
            "name": payload.name.strip(),
            "phone": payload.phone,
            "email": payload.email,
            "isLeadPartner": payload.is_lead_partner or bool(partner.get("isLeadPartner")),
        }
        await db.flush()

    async def delete_partner(self, db: AsyncSession, app: Application, index: int) -> None:
        self._require_partnership(app)
        self._get(app, index)

        removed = app.partners.pop(index)
        if removed.get("isLeadPartner") and app.partners:
            app.partners[0] = {**app.partners[0], "isLeadPartner": True}
        await db.flush()
        logger.info("Partner %s removed from application %s", removed.get("phone"), app.id)

    async def verify_partner_pan(
        self,
        db: AsyncSession,
        provider: KycProvider,
        app: Application,
        index: int,
        pan: str,
        name: str,
        dob: str,
    ) -> Dict[str, Any]:
        self._require_partnership(app)
        partner = self._get(app, index)
        if partner.get("kycCompleted") and partner.get("panNumber"):
            raise BadRequestError("Partner PAN already verified")

        result = await verification_service.check_member_pan(
            provider, pan, name, dob, "partner", f'partner "{partner.get("name")}"'
        )

        app.partners[index] = {
            **partner,
            "panNumber": pan,
            "kycCompleted": result["verified"],
            "kycData": {
                "pan": {
                    "number": pan,
                    "name": name,
                    "verified": result["verified"],
                    "linkedWithAadhaar": result["pan"]["linkedWithAadhaar"],
                    "verifiedAt": utcnow().isoformat(),
                }
            },
        }
        await db.flush()

        logger.info(
            "Partner PAN checked for application %s: partner %d flagged=%s",
            app.id,
            index,
            result["flaggedForReview"],
        )
        return {**result, "partnerIndex": index, "partnerName": partner.get("name")}

    async def complete_partners(self, db: AsyncSession, app: Application) -> str:
        self._require_partnership(app)
        if len(app.partners or []) < MIN_PARTNERS:
            raise BadRequestError(f"Partnership requires at least {MIN_PARTNERS} partners")
        pending = [p for p in app.partners if not p.get("kycCompleted")]
        if pending:
            raise BadRequestError(
                f"{len(pending)} partner(s) have not completed KYC verification"
            )
        app.mark_step("partners")
        await db.flush()
        return app.next_step()


partner_service = PartnerService()
