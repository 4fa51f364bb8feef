# Services package init
"""
Storefront Backend — Services Layer
=====================================

What:  Business logic between routes (HTTP) and the database.
How:   Services are constructed once in create_app() and held by
       AppServices. Methods take the request's AsyncSession and an optional
       RequestContext; they raise StorefrontError subclasses and never build
       HTTP responses themselves.

Service Inventory:
    - AuditRecorder:          audit trail writes (own transaction) and queries
    - SessionManager:         server-side sessions behind every access token
    - AuthService:            register, login throttle, logout, bearer auth
    - UserService:            user listing, role assignment, activation
    - FeaturedProductService: curated home page products
    - OrderService:           orders from completed checkouts
    - PaymentService:         Stripe checkout and webhook handling
    - UpstreamClient:         retry + circuit breaker base for HTTP APIs
        ├── PrintifyClient:   catalog reads
        └── StripeClient:     checkout sessions, webhook signatures
"""
