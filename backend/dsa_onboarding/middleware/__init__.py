"""
DSA Onboarding Backend — Middleware Package
=============================================

Request-wide middleware (installed in main.create_app(), outermost first):
    RequestIDMiddleware       correlation id in a ContextVar + X-Request-ID
    RequestLoggingMiddleware  access log line per request
    AuditMiddleware           redacted audit record, written after the response
    GZip / CORS               from Starlette

Per-route dependencies (FastAPI Depends):
    rate_limit.RateLimiter    general / auth / otp / kyc tiers
    auth.require_auth         bearer access token → request.state.identity
    validation.validate       schema check of body / query / params
"""
