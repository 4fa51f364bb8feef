# Middleware package init
"""
Storefront Backend — Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request Context] → [Rate Limit] → [Logging] → [Audit] → [CORS/GZip] → Route

    1. Request Context FIRST: every later step (including a 429) can log and
       respond with the request ID
    2. Rate Limit: reject abusive clients before any real work
    3. Logging: times everything below it
    4. Audit: sees the final status and the authenticated user, then writes
       its record after the response has been sent

    The order is reversed for responses, so the ID headers are added last
    and are present on every response, including errors.
"""
