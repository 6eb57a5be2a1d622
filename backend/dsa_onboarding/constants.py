"""
DSA Onboarding Backend — Domain Constants
===========================================

What:  Entity types, application lifecycle, onboarding steps per entity type,
       document types and verification thresholds.
Who:   Models (status progression), validators (allowed values), services.
"""

from typing import Dict, List, Tuple

# ── Entities ──────────────────────────────────────────────────────────────
ENTITY_TYPES: Tuple[str, ...] = ("individual", "proprietorship", "partnership", "company")
COMPANY_SUB_TYPES: Tuple[str, ...] = ("pvt_ltd", "llp", "opc")

# ── Application lifecycle ─────────────────────────────────────────────────
APPLICATION_STATUSES: Tuple[str, ...] = (
    "initiated",
    "kyc",
    "pan",
    "bank",
    "references",
    "documents",
    "partners",
    "company_verification",
    "directors",
    "agreement",
    "estamp",
    "esign",
    "completed",
    "rejected",
)
TERMINAL_STATUSES: Tuple[str, ...] = ("completed", "rejected")

# Keys of Application.completed_steps
STEP_KEYS: Tuple[str, ...] = (
    "kyc",
    "pan",
    "bank",
    "references",
    "documents",
    "partners",
    "company_verification",
    "directors",
    "agreement",
)

ENTITY_STEPS: Dict[str, List[str]] = {
    "individual": ["kyc", "bank", "references", "agreement"],
    "proprietorship": ["kyc", "bank", "references", "documents", "agreement"],
    "partnership": ["partners", "bank", "documents", "references", "agreement"],
    "company": ["company_verification", "directors", "bank", "documents", "agreement"],
}

STEP_NAMES: Dict[str, str] = {
    "kyc": "KYC Verification",
    "pan": "PAN Verification",
    "bank": "Bank Verification",
    "references": "References",
    "documents": "Documents",
    "partners": "Partners",
    "company_verification": "Company Verification",
    "directors": "Directors",
    "agreement": "Agreement",
}

# ── Documents ─────────────────────────────────────────────────────────────
DOCUMENT_TYPES: Tuple[str, ...] = (
    "gst_certificate",
    "udyam_registration",
    "shop_act_license",
    "partnership_deed",
    "certificate_of_incorporation",
    "memorandum_of_association",
    "articles_of_association",
    "board_resolution",
    "photo",
    "cancelled_cheque",
    "address_proof",
    "unsigned_agreement",
    "estamped_agreement",
    "signed_agreement",
)

REQUIRED_DOCUMENTS: Dict[str, List[str]] = {
    "individual": [],
    "proprietorship": [
        "gst_certificate",
        "udyam_registration",
        "shop_act_license",
        "cancelled_cheque",
    ],
    "partnership": ["partnership_deed", "gst_certificate", "cancelled_cheque"],
    "company": [
        "certificate_of_incorporation",
        "memorandum_of_association",
        "articles_of_association",
        "board_resolution",
        "gst_certificate",
        "cancelled_cheque",
    ],
}

# ── Verification rules ────────────────────────────────────────────────────
MIN_REFERENCES = 2
MAX_REFERENCES = 5
MIN_PARTNERS = 2
MAX_PARTNERS = 10
NAME_MATCH_BLOCK_THRESHOLD = 70
NAME_MATCH_FLAG_THRESHOLD = 80
BLOCKED_PAN_REMARKS: Tuple[str, ...] = ("deceased", "deleted", "liquidated", "merger")
