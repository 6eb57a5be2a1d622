# Services package init
"""
DSA Onboarding Backend — Services Layer
=========================================

What:  Business logic between routes (HTTP) and the database.
How:   Services take a session plus domain values, apply the onboarding rules
       and raise ApiError subclasses; routes only shape the HTTP response.

Service Inventory:
    - token_service:        access/refresh credential issuance and rotation
    - otp_service:          login OTP generation and verification
    - auth_service:         send-otp / verify-otp / refresh / logout flows
    - application_service:  step progression, snapshot, references
    - document_service:     document upload bookkeeping per entity type
    - file_service:         upload validation and storage on disk
    - provider_base:        KycProvider interface (Aadhaar, PAN, bank, MCA)
    - sandbox_service:      HTTP KycProvider with retry + circuit breaker
    - verification_service: KYC / bank / company verification rules
"""
