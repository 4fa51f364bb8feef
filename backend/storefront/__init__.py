"""
Storefront Backend — Application Package
==========================================

What: The storefront API: catalog proxying, checkout and payments, user
      authentication and sessions, role-based authorization and auditing.

Architecture Note:

    ┌─────────────────────────────────────┐
    │  Middleware (context, log, audit)   │  ← Cross-cutting, every request
    ├─────────────────────────────────────┤
    │           Routes (API Layer)        │  ← HTTP concerns, envelopes
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Sessions, audit, orders, clients
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Services are built once by the app factory (storefront.main.create_app)
    and handed to routes through FastAPI dependencies.
"""

__version__ = "1.0.0"
