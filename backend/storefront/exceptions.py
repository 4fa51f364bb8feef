"""
Storefront Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for the error scenarios of the API.
Why:   Each exception carries its HTTP status, the message safe to show the
       client, and the log level the error deserves. The global handlers in
       main.py can then render every failure through the response envelope
       without a per-type branch.
How:   Each exception class carries a message and optional context dict.
       `context` is logged server-side but never returned to the client.
Who:   Raised by services, dependencies and middleware; caught by global handlers.

Exception Hierarchy:
    StorefrontError (base)             → 500
    ├── ValidationError                → 400 Bad Request (client can fix)
    ├── WebhookSignatureError          → 400 Bad Request (logged as ERROR)
    ├── AuthenticationError            → 401 Unauthorized
    ├── AuthorizationError             → 403 Forbidden
    ├── NotFoundError                  → 404 Not Found
    ├── ConflictError                  → 409 Conflict
    ├── RateLimitExceededError         → 429 Too Many Requests
    ├── DatabaseError                  → 500 Internal Server Error
    ├── UpstreamServiceError           → 502 Bad Gateway
    └── CircuitBreakerOpenError        → 503 Service Unavailable
"""

import logging
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """
    Base exception for all Storefront application errors.

    Attributes:
        message:      Error description used in server logs
        client_message: Text exposed in the envelope `error` field
        context:      Additional debug info (logged, NOT returned to client)
        status_code:  HTTP status the global handler responds with
        log_level:    Severity used when the error is logged
    """

    status_code: int = 500
    log_level: int = logging.ERROR
    default_client_message: Optional[str] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        client_message: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        self.client_message = client_message or self.default_client_message or message
        super().__init__(self.message)


class ValidationError(StorefrontError):
    """
    Raised when client input fails business-rule validation.

    `errors` maps a field name to its message and is rendered as
    `data.validationErrors` in the envelope.
    """

    status_code = 400
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        errors: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        self.errors: Dict[str, Any] = dict(errors or {})
        if field:
            ctx["field"] = field
            self.errors.setdefault(field, message)
        super().__init__(message=message, context=ctx)
        self.field = field


class WebhookSignatureError(StorefrontError):
    """
    Raised when an incoming payment webhook fails signature verification.

    HTTP 400, but logged at ERROR: a bad signature means either a
    misconfigured secret or a forged request, both of which need attention.
    """

    status_code = 400
    log_level = logging.ERROR

    def __init__(
        self,
        message: str = "Invalid webhook signature",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            context=context,
            client_message=f"Webhook Error: {message}",
        )


class AuthenticationError(StorefrontError):
    """Missing, invalid or expired credentials. HTTP 401."""

    status_code = 401
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(StorefrontError):
    """Authenticated, but lacking the role or permission. HTTP 403."""

    status_code = 403
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Insufficient permissions",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(StorefrontError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing records; the service layer converts
    that into NotFoundError so the route never deals with status codes.
    """

    status_code = 404
    log_level = logging.WARNING

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class ConflictError(StorefrontError):
    """The request collides with existing state (duplicate email, etc). HTTP 409."""

    status_code = 409
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(StorefrontError):
    """
    Raised when a client exceeds a sliding-window limit.

    HTTP 429 with a Retry-After header carrying `retry_after` seconds.
    """

    status_code = 429
    log_level = logging.WARNING

    def __init__(
        self,
        retry_after: int = 60,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = message or (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class DatabaseError(StorefrontError):
    """
    Raised when database operations fail unexpectedly.

    The client always sees a generic message; the SQL error stays in the
    server log so table and constraint names are never exposed.
    """

    status_code = 500
    log_level = logging.ERROR
    default_client_message = "A database error occurred. Please try again later."

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamServiceError(StorefrontError):
    """
    An external API (Stripe, Printify) failed after all retries.

    HTTP 502: our server is fine but the service behind it is not.
    """

    status_code = 502
    log_level = logging.ERROR

    def __init__(
        self,
        service: str = "upstream",
        message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        if upstream_status is not None:
            ctx["upstream_status"] = upstream_status
        super().__init__(
            message=message or f"{service} request failed",
            context=ctx,
            client_message=f"The {service} service is temporarily unavailable",
        )
        self.service = service
        self.upstream_status = upstream_status


class CircuitBreakerOpenError(StorefrontError):
    """
    Raised when a circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for recovery_time seconds)
        → After recovery_time → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    """

    status_code = 503
    log_level = logging.WARNING

    def __init__(
        self,
        recovery_time: int = 60,
        service: str = "upstream",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The {service} service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
        self.service = service
