# Routes package init
"""
DSA Onboarding Backend — API Routes Package
=============================================

Route Inventory:
    - health.py:       GET  /health, GET /api
    - auth.py:         /api/auth        (send-otp, verify-otp, refresh-token, logout, me)
    - application.py:  /api/application (snapshot, steps, entity type, status)
    - references.py:   /api/references  (CRUD + complete)
    - documents.py:    /api/documents   (upload, list, delete, required, complete)
    - kyc.py:          /api/kyc         (Aadhaar OTP, PAN, complete)
    - bank.py:         /api/bank        (IFSC lookup, account verification)
    - company.py:      /api/company     (MCA verification, directors PAN + complete)
    - partners.py:     /api/partners    (CRUD, partner PAN, complete)
    - agreement.py:    /api/agreement   (status, mark-signed)

Routes stay thin: validate via dependencies, call a service, shape JSON.
"""
