# Routes package init
"""
Storefront Backend — API Routes Package
=========================================

What:  HTTP route handlers, one module per resource.
How:   Handlers validate input with Pydantic, call a service from
       AppServices and return `responder.success(...)` (or `.created`,
       `.paginated`). Errors are raised, never rendered here.

Route Inventory:
    - auth.py:               /api/auth/...        register, login, logout, me
    - users.py:              /api/users/...       user administration
    - featured_products.py:  /api/featured-products
    - payment.py:            /api/payment/...     checkout, Stripe webhook, orders
    - printify.py:           /api/printify/...    catalog proxy
    - audit.py:              /api/audit/...       audit trail queries
    - health.py:             /api/health
"""
