"""
DSA Onboarding Backend — Verification Service
===============================================

What:  KYC (Aadhaar OTP, PAN), bank account and company verification rules.
How:   Calls the injected KycProvider, interprets its envelope, applies the
       blocking / flagging rules and records the outcome on the application.
       Providers only transport; every decision is made here.
Who:   routes/kyc.py, routes/bank.py, routes/company.py and, for partner
       PAN checks, services/partner_service.py.

Decision Rules:
    PAN   status != valid                     → reject
          remarks deceased/deleted/liquidated/merger → reject
          name AND dob mismatch               → reject
          name OR dob mismatch, not seeded    → flag for review
          non-individual category on an individual application → reject
    Bank  name match score  < 70              → reject
                            70..79            → verified, flagged for review
                            ≥ 80              → verified
    MCA   status must begin with the word "active"
    Partner / director PAN
          name AND dob mismatch               → reject
          name OR dob mismatch, not seeded    → flag; KYC stays incomplete
          non-individual category             → reject
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dsa_onboarding.constants import (
    BLOCKED_PAN_REMARKS,
    NAME_MATCH_BLOCK_THRESHOLD,
    NAME_MATCH_FLAG_THRESHOLD,
)
from dsa_onboarding.database import utcnow
from dsa_onboarding.exceptions import BadRequestError, NotFoundError
from dsa_onboarding.models.application import Application
from dsa_onboarding.services.application_service import mask_account_number, mask_pan
from dsa_onboarding.services.provider_base import KycProvider

logger = logging.getLogger(__name__)

DEFAULT_PAN_NAME = "NA"
DEFAULT_PAN_DOB = "01/01/1990"
LLP_ENTITY = "in.co.sandbox.kyc.mca.llp"


# ══════════════════════════════════════════════════════════════════════════
# Name Matching
# ══════════════════════════════════════════════════════════════════════════

def levenshtein_distance(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def normalize_name(name: str) -> str:
    letters = "".join(ch if ("A" <= ch <= "Z" or ch.isspace()) else "" for ch in name.upper())
    return " ".join(letters.split())


def _tokens_match(a: str, b: str) -> bool:
    return a == b or a in b or b in a or levenshtein_distance(a, b) <= 2


def name_match_score(kyc_name: str, bank_name: str) -> int:
    """
    0..100 similarity of two person/company names.

    The higher of a token score (tokens equal, contained in one another, or
    within edit distance 2, over the larger token count) and the whole-string
    Levenshtein similarity, rounded half up.
    """
    if not kyc_name or not bank_name:
        return 0
    n1, n2 = normalize_name(kyc_name), normalize_name(bank_name)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 100

    tokens1, tokens2 = n1.split(" "), n2.split(" ")
    matched = sum(1 for t1 in tokens1 if any(_tokens_match(t1, t2) for t2 in tokens2))
    token_score = matched / max(len(tokens1), len(tokens2)) * 100

    max_len = max(len(n1), len(n2))
    levenshtein_score = (max_len - levenshtein_distance(n1, n2)) / max_len * 100

    return int(math.floor(max(token_score, levenshtein_score) + 0.5))


def to_pan_dob(dob: Optional[str]) -> str:
    """DD/MM/YYYY from DD-MM-YYYY, YYYY-MM-DD or DD/MM/YYYY."""
    if not dob:
        return DEFAULT_PAN_DOB
    if "-" in dob:
        parts = dob.split("-")
        if len(parts[0]) == 4:
            return f"{parts[2]}/{parts[1]}/{parts[0]}"
        return dob.replace("-", "/")
    if "/" in dob:
        return dob
    return DEFAULT_PAN_DOB


def _data(envelope: Dict[str, Any]) -> Dict[str, Any]:
    data = envelope.get("data")
    return data if isinstance(data, dict) else {}


def _ok(envelope: Dict[str, Any]) -> bool:
    return envelope.get("code") in (200, "200") and bool(_data(envelope))


class VerificationService:
    # ══════════════════════════════════════════════════════════════════════
    # Aadhaar
    # ══════════════════════════════════════════════════════════════════════

    async def send_aadhaar_otp(self, provider: KycProvider, aadhaar_number: str) -> Dict[str, Any]:
        envelope = await provider.generate_aadhaar_otp(aadhaar_number)
        data = _data(envelope)
        top_message = str(envelope.get("message") or "")

        if "please try after" in top_message.lower():
            raise BadRequestError("OTP already sent. Please wait 45 seconds before retrying.")
        if data.get("message") == "Invalid Aadhaar Card":
            raise BadRequestError("Invalid Aadhaar number. Please check and try again.")
        if not _ok(envelope) or not data.get("reference_id"):
            raise BadRequestError(top_message or data.get("message") or "Failed to send OTP")

        logger.info("Aadhaar OTP sent for XXXX%s, ref=%s", aadhaar_number[-4:], data["reference_id"])
        return {
            "referenceId": data["reference_id"],
            "message": data.get("message") or "OTP sent to registered mobile number",
        }

    async def verify_aadhaar_otp(
        self,
        db: AsyncSession,
        provider: KycProvider,
        app: Application,
        reference_id: str,
        otp: str,
        aadhaar_number: str,
    ) -> Dict[str, Any]:
        envelope = await provider.verify_aadhaar_otp(str(reference_id), otp)
        data = _data(envelope)
        provider_message = str(data.get("message") or "").lower()

        if "invalid otp" in provider_message:
            raise BadRequestError("Invalid OTP. Please check and try again.")
        if "otp expired" in provider_message:
            raise BadRequestError("OTP expired. Please request a new OTP.")
        if "invalid reference" in provider_message:
            raise BadRequestError("Session expired. Please enter Aadhaar number again.")
        if "under process" in provider_message or "try after" in provider_message:
            raise BadRequestError("Please wait 30 seconds and try again.")
        if not _ok(envelope):
            raise BadRequestError(data.get("message") or "OTP verification failed")
        if data.get("status") not in ("SUCCESS", "VALID"):
            raise BadRequestError("Aadhaar verification failed")

        app.kyc["method"] = "aadhaar_otp"
        app.kyc["aadhaar"] = {
            "name": data.get("name"),
            "maskedNumber": f"XXXX XXXX {aadhaar_number[-4:]}",
            "dob": data.get("date_of_birth"),
            "gender": data.get("gender"),
            "address": data.get("full_address"),
            "verifiedAt": utcnow().isoformat(),
        }
        await db.flush()
        logger.info("Aadhaar verified for application %s", app.id)

        return {
            "verified": True,
            "aadhaarData": {
                "name": data.get("name"),
                "gender": data.get("gender"),
                "dob": data.get("date_of_birth"),
                "address": data.get("full_address"),
                "hasPhoto": bool(data.get("photo")),
            },
        }

    # ══════════════════════════════════════════════════════════════════════
    # PAN
    # ══════════════════════════════════════════════════════════════════════

    async def verify_pan(
        self, db: AsyncSession, provider: KycProvider, app: Application, pan: str
    ) -> Dict[str, Any]:
        aadhaar = (app.kyc or {}).get("aadhaar") or {}
        name_as_per_pan = aadhaar.get("name") or DEFAULT_PAN_NAME
        date_of_birth = to_pan_dob(aadhaar.get("dob"))

        envelope = await provider.verify_pan(pan, name_as_per_pan, date_of_birth)
        if not _ok(envelope):
            raise BadRequestError(envelope.get("message") or "PAN verification failed")
        data = _data(envelope)

        remarks = data.get("remarks")
        if data.get("status") != "valid":
            suffix = f" ({remarks})" if remarks else ""
            raise BadRequestError(f"Invalid PAN number{suffix}")
        if remarks and any(word in str(remarks).lower() for word in BLOCKED_PAN_REMARKS):
            raise BadRequestError(f"PAN verification failed: {remarks}. This PAN cannot be used.")

        name_checked = name_as_per_pan != DEFAULT_PAN_NAME
        dob_checked = date_of_birth != DEFAULT_PAN_DOB
        name_match = data.get("name_as_per_pan_match") is True
        dob_match = data.get("date_of_birth_match") is True
        seeding = data.get("aadhaar_seeding_status")
        linked = seeding == "y"

        if name_checked and not name_match and dob_checked and not dob_match:
            raise BadRequestError(
                "Both Name and Date of Birth in PAN do not match your Aadhaar details. "
                "Please ensure your PAN is registered under your name as per Aadhaar."
            )

        warnings: List[str] = []
        if name_checked and not name_match:
            warnings.append("Name in PAN does not match Aadhaar name - flagged for manual review")
        if dob_checked and not dob_match:
            warnings.append("Date of birth in PAN does not match Aadhaar DOB - flagged for manual review")
        if seeding == "n":
            warnings.append("PAN is not linked with Aadhaar. Please link your PAN with Aadhaar to avoid issues.")
        if seeding == "na":
            warnings.append("PAN-Aadhaar linking status is unavailable - flagged for manual review")
        flagged = bool(warnings)

        category = data.get("category")
        if category and category != "individual" and app.entity_type == "individual":
            raise BadRequestError(
                f'PAN category is "{category}" but your entity type is Individual. '
                "Please use a personal PAN (category: individual)."
            )

        now = utcnow().isoformat()
        app.kyc["pan"] = {
            "number": pan,
            "name": name_as_per_pan if name_checked else pan,
            "verified": not flagged,
            "linkedWithAadhaar": linked,
            "verifiedAt": now,
        }
        cross = dict(app.kyc.get("crossValidation") or {})
        cross["panAadhaar"] = {
            "nameMatch": name_match,
            "dobMatch": dob_match,
            "flaggedForReview": flagged,
            "warnings": warnings,
            "checkedAt": now,
        }
        app.kyc["crossValidation"] = cross
        await db.flush()

        logger.info(
            "PAN checked for application %s: category=%s linked=%s name_match=%s dob_match=%s flagged=%s",
            app.id,
            category,
            linked,
            name_match,
            dob_match,
            flagged,
        )
        return {
            "verified": not flagged,
            "flaggedForReview": flagged,
            "pan": {
                "number": pan,
                "category": category,
                "nameMatch": name_match,
                "dobMatch": dob_match,
                "linkedWithAadhaar": linked,
                "aadhaarSeedingStatus": seeding,
                "remarks": remarks,
            },
            "crossValidation": {
                "nameMatch": name_match,
                "dobMatch": dob_match,
                "aadhaarLinked": linked,
                "aadhaarSeedingStatus": seeding,
                "warnings": warnings,
            },
        }

    async def complete_kyc(self, db: AsyncSession, app: Application) -> str:
        kyc = app.kyc or {}
        if not (kyc.get("aadhaar") or {}).get("verifiedAt"):
            raise BadRequestError("Aadhaar verification is required")
        if not (kyc.get("pan") or {}).get("verified"):
            raise BadRequestError("PAN verification is required")

        app.mark_step("kyc")
        app.mark_step("pan")
        await db.flush()
        return app.next_step()

    # ══════════════════════════════════════════════════════════════════════
    # Bank
    # ══════════════════════════════════════════════════════════════════════

    def _branch_record(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        if envelope.get("IFSC"):
            return envelope
        data = _data(envelope)
        return data if data.get("IFSC") else {}

    async def verify_ifsc(self, provider: KycProvider, ifsc: str) -> Dict[str, Any]:
        branch = self._branch_record(await provider.verify_ifsc(ifsc))
        if not branch:
            raise BadRequestError("Invalid IFSC code")
        return {
            "ifsc": branch.get("IFSC"),
            "bank": branch.get("BANK"),
            "branch": branch.get("BRANCH"),
            "address": branch.get("ADDRESS"),
            "city": branch.get("CITY"),
            "state": branch.get("STATE"),
            "district": branch.get("DISTRICT"),
            "micr": branch.get("MICR"),
            "impsEnabled": bool(branch.get("IMPS")),
            "neftEnabled": bool(branch.get("NEFT")),
            "rtgsEnabled": bool(branch.get("RTGS")),
            "upiEnabled": bool(branch.get("UPI")),
        }

    def kyc_name(self, app: Application) -> str:
        """Name the bank account holder must match."""
        if app.entity_type == "company":
            name = (app.company or {}).get("name")
            if not name:
                raise BadRequestError("Please complete company verification first")
            return name

        aadhaar = (app.kyc or {}).get("aadhaar") or {}
        if not aadhaar.get("verifiedAt"):
            raise BadRequestError("Please complete KYC verification first")
        if not aadhaar.get("name"):
            raise BadRequestError("KYC name not found")
        return aadhaar["name"]

    def _check_account_answer(self, data: Dict[str, Any]) -> None:
        message = str(data.get("message") or "").lower()
        if "invalid account" in message or "invalid ifsc" in message:
            raise BadRequestError("Invalid account number or IFSC code")
        if "offline" in message:
            raise BadRequestError("Bank is currently offline. Please try again later.")
        if "blocked" in message:
            raise BadRequestError("This bank account is blocked. Please use a different account.")
        if "nre" in message:
            raise BadRequestError("NRE accounts are not supported. Please use a regular savings account.")
        if not data.get("account_exists"):
            raise BadRequestError(data.get("message") or "Bank account not found or invalid")

    @staticmethod
    def classify_score(score: int) -> Tuple[bool, bool]:
        """(approved, flagged) for a name-match score; both False means blocked."""
        approved = score >= NAME_MATCH_FLAG_THRESHOLD
        flagged = NAME_MATCH_BLOCK_THRESHOLD <= score < NAME_MATCH_FLAG_THRESHOLD
        return approved, flagged

    async def verify_bank(
        self,
        db: AsyncSession,
        provider: KycProvider,
        app: Application,
        account_number: str,
        confirm_account_number: str,
        ifsc: str,
    ) -> Dict[str, Any]:
        if account_number != confirm_account_number:
            raise BadRequestError("Account numbers do not match")

        kyc_name = self.kyc_name(app)

        branch = self._branch_record(await provider.verify_ifsc(ifsc))
        if not branch:
            raise BadRequestError("Invalid IFSC code")
        if not branch.get("IMPS"):
            logger.warning("IMPS not supported for IFSC %s", ifsc)
            raise BadRequestError(
                f"Bank branch {branch.get('BRANCH') or ifsc} does not support IMPS. "
                "Please use an account from an IMPS-enabled branch."
            )

        envelope = await provider.verify_bank_account(ifsc, account_number, kyc_name)
        data = _data(envelope) or envelope
        self._check_account_answer(data)

        name_at_bank = data.get("name_at_bank") or ""
        score = name_match_score(kyc_name, name_at_bank)
        approved, flagged = self.classify_score(score)
        logger.info(
            "Bank name match for application %s: score=%d (block<%d, flag<%d)",
            app.id,
            score,
            NAME_MATCH_BLOCK_THRESHOLD,
            NAME_MATCH_FLAG_THRESHOLD,
        )

        if not approved and not flagged:
            raise BadRequestError(
                f'Bank account holder name "{name_at_bank}" does not match your KYC verified '
                f'name "{kyc_name}" (Match: {score}%). '
                "Please use a bank account registered in your own name."
            )

        now = utcnow().isoformat()
        app.bank = {
            "accountNumber": account_number,
            "ifsc": ifsc,
            "bankName": branch.get("BANK"),
            "branchName": branch.get("BRANCH"),
            "accountHolderName": name_at_bank,
            "verified": True,
            "verificationMethod": "penniless",
            "nameMatchScore": score,
            "flaggedForReview": flagged,
            "verifiedAt": now,
        }
        cross = dict(app.kyc.get("crossValidation") or {})
        cross["bankKyc"] = {
            "nameMatch": approved,
            "nameMatchScore": score,
            "flaggedForReview": flagged,
            "checkedAt": now,
        }
        app.kyc["crossValidation"] = cross
        app.mark_step("bank")
        await db.flush()

        if approved:
            message = "Bank account verified successfully"
        else:
            message = (
                f"Bank verified but flagged for manual review. Name match: {score}% "
                f"(requires ≥{NAME_MATCH_FLAG_THRESHOLD}% for auto-approval)"
            )

        return {
            "verified": True,
            "flaggedForReview": flagged,
            "bank": {
                "accountNumber": mask_account_number(account_number),
                "ifsc": ifsc,
                "bankName": branch.get("BANK"),
                "branchName": branch.get("BRANCH"),
                "accountHolderName": name_at_bank,
            },
            "nameMatch": {
                "kycName": kyc_name,
                "bankName": name_at_bank,
                "score": score,
                "blockThreshold": NAME_MATCH_BLOCK_THRESHOLD,
                "flagThreshold": NAME_MATCH_FLAG_THRESHOLD,
            },
            "message": message,
        }

    async def complete_bank(self, db: AsyncSession, app: Application) -> str:
        if not (app.bank or {}).get("verified"):
            raise BadRequestError("Bank verification is required")
        app.mark_step("bank")
        await db.flush()
        return app.next_step()

    # ══════════════════════════════════════════════════════════════════════
    # Company (MCA)
    # ══════════════════════════════════════════════════════════════════════

    async def verify_company(
        self, db: AsyncSession, provider: KycProvider, app: Application, identifier: str
    ) -> Dict[str, Any]:
        if app.entity_type != "company":
            raise BadRequestError("Company verification only for Company entity type")

        envelope = await provider.company_master_data(identifier)
        if not _ok(envelope):
            raise BadRequestError(envelope.get("message") or "Company verification failed")
        data = _data(envelope)

        is_llp = data.get("@entity") == LLP_ENTITY
        master = data.get("llp_master_data" if is_llp else "company_master_data")
        if not master:
            raise BadRequestError("Failed to get company data from MCA")

        status = master.get("llp_status") if is_llp else master.get("company_status(for_efiling)")
        if status and str(status).strip().lower().split(" ")[0] != "active":
            raise BadRequestError(f'Company status is "{status}". Only Active companies are allowed.')

        directors = [
            {
                "din": d.get("din/pan") or d.get("din") or "",
                "name": d.get("name") or "",
                "designation": d.get("designation") or "",
                "beginDate": d.get("begin_date") or "",
                "endDate": d.get("end_date") or "-",
                "kycCompleted": False,
            }
            for d in data.get("directors/signatory_details") or []
        ]

        company = {
            "cin": None if is_llp else master.get("cin"),
            "llpin": master.get("llpin") if is_llp else None,
            "name": master.get("llp_name") if is_llp else master.get("company_name"),
            "status": status,
            "registrationDate": master.get("date_of_incorporation"),
            "registeredAddress": master.get("registered_address"),
            "email": master.get("email_id"),
            "authorizedCapital": master.get("authorised_capital(rs)"),
            "paidUpCapital": master.get("paid_up_capital(rs)"),
            "directors": directors,
            "verifiedAt": utcnow().isoformat(),
        }
        app.company = company
        app.mark_step("company_verification")
        await db.flush()

        logger.info(
            "Company verified for application %s: %s (%d directors)",
            app.id,
            company["name"],
            len(directors),
        )
        return {
            "verified": True,
            "isLLP": is_llp,
            "company": {
                "name": company["name"],
                "cin": company["cin"],
                "llpin": company["llpin"],
                "status": status,
                "registrationDate": company["registrationDate"],
                "registeredAddress": company["registeredAddress"],
                "directorsCount": len(directors),
                "directors": [
                    {"din": d["din"], "name": d["name"], "designation": d["designation"]}
                    for d in directors
                ],
            },
        }

    def get_company(self, app: Application) -> Dict[str, Any]:
        company = app.company
        if not company:
            raise NotFoundError("Company not verified yet")
        return {
            "name": company.get("name"),
            "cin": company.get("cin"),
            "llpin": company.get("llpin"),
            "status": company.get("status"),
            "registrationDate": company.get("registrationDate"),
            "registeredAddress": company.get("registeredAddress"),
            "directors": [
                {
                    "din": d.get("din"),
                    "name": d.get("name"),
                    "designation": d.get("designation"),
                    "kycCompleted": d.get("kycCompleted", False),
                }
                for d in company.get("directors") or []
            ],
        }

    # ══════════════════════════════════════════════════════════════════════
    # Partners & Directors
    # ══════════════════════════════════════════════════════════════════════

    async def check_member_pan(
        self, provider: KycProvider, pan: str, name: str, dob: str, role: str, label: str
    ) -> Dict[str, Any]:
        """
        PAN check for a partner or director against the name and DOB they gave.

        Unlike the applicant's own PAN both name and DOB are always supplied,
        so each mismatch flags and the pair of them rejects. Only a personal
        PAN (category individual) is accepted.
        """
        envelope = await provider.verify_pan(pan, name, dob)
        if not _ok(envelope):
            raise BadRequestError(envelope.get("message") or "PAN verification failed")
        data = _data(envelope)

        remarks = data.get("remarks")
        if data.get("status") != "valid":
            suffix = f" ({remarks})" if remarks else ""
            raise BadRequestError(f"Invalid PAN number{suffix}")
        if remarks and any(word in str(remarks).lower() for word in BLOCKED_PAN_REMARKS):
            raise BadRequestError(f"PAN verification failed: {remarks}. This PAN cannot be used.")

        name_match = data.get("name_as_per_pan_match") is True
        dob_match = data.get("date_of_birth_match") is True
        seeding = data.get("aadhaar_seeding_status")
        linked = seeding == "y"
        title = role.capitalize()

        if not name_match and not dob_match:
            raise BadRequestError(
                f"Both Name and Date of Birth for {label} do not match PAN records. "
                f"Please verify the {role} details are correct."
            )

        warnings: List[str] = []
        if not name_match:
            warnings.append(f"{title} name does not match PAN records")
        if not dob_match:
            warnings.append(f"{title} DOB does not match PAN records")
        if seeding == "n":
            warnings.append(f"{title} PAN is not linked with Aadhaar")
        if seeding == "na":
            warnings.append(f"{title} PAN-Aadhaar linking status unavailable")
        flagged = bool(warnings)

        category = data.get("category")
        if category and category != "individual":
            raise BadRequestError(
                f'{title} PAN category is "{category}". '
                f"{title}s must use personal PAN (category: individual)."
            )

        if flagged:
            logger.warning("%s PAN for %s flagged for review: %s", title, label, "; ".join(warnings))
        return {
            "verified": not flagged,
            "flaggedForReview": flagged,
            "pan": {
                "number": pan,
                "category": category,
                "nameMatch": name_match,
                "dobMatch": dob_match,
                "linkedWithAadhaar": linked,
                "aadhaarSeedingStatus": seeding,
            },
            "crossValidation": {
                "nameMatch": name_match,
                "dobMatch": dob_match,
                "aadhaarLinked": linked,
                "warnings": warnings,
            },
        }

    def _directors(self, app: Application) -> List[Dict[str, Any]]:
        if app.entity_type != "company":
            raise BadRequestError("Directors only apply to Company entity type")
        directors = list((app.company or {}).get("directors") or [])
        if not directors:
            raise BadRequestError("No directors found. Please verify company first.")
        return directors

    def list_directors(self, app: Application) -> Dict[str, Any]:
        if not app.company:
            raise NotFoundError("Company not verified yet")
        directors = [
            {
                "din": d.get("din"),
                "name": d.get("name"),
                "designation": d.get("designation"),
                "kycCompleted": d.get("kycCompleted", False),
                "panNumber": mask_pan(d.get("panNumber")),
            }
            for d in app.company.get("directors") or []
        ]
        pending = sum(1 for d in directors if not d["kycCompleted"])
        return {
            "directors": directors,
            "total": len(directors),
            "kycCompleted": len(directors) - pending,
            "kycPending": pending,
        }

    async def verify_director_pan(
        self,
        db: AsyncSession,
        provider: KycProvider,
        app: Application,
        din: str,
        pan: str,
        name: str,
        dob: str,
    ) -> Dict[str, Any]:
        directors = self._directors(app)
        index = next((i for i, d in enumerate(directors) if d.get("din") == din), -1)
        if index < 0:
            raise NotFoundError(f"Director with DIN {din} not found")
        director = directors[index]
        if director.get("kycCompleted") and director.get("panNumber"):
            raise BadRequestError("Director PAN already verified")

        result = await self.check_member_pan(
            provider, pan, name, dob, "director", f'director "{director.get("name")}" (DIN: {din})'
        )

        directors[index] = {
            **director,
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
        app.company = {**app.company, "directors": directors}
        await db.flush()

        logger.info(
            "Director PAN checked for application %s: DIN %s category=%s flagged=%s",
            app.id,
            din,
            result["pan"]["category"],
            result["flaggedForReview"],
        )
        return {**result, "din": din, "directorName": director.get("name")}

    async def complete_directors(self, db: AsyncSession, app: Application) -> str:
        if not (app.company or {}).get("directors"):
            raise BadRequestError("No directors found")
        pending = [d for d in app.company["directors"] if not d.get("kycCompleted")]
        if pending:
            raise BadRequestError(f"{len(pending)} director(s) have not completed KYC")
        app.mark_step("directors")
        await db.flush()
        return app.next_step()


verification_service = VerificationService()
