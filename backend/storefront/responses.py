"""
Storefront Backend — Response Envelope Builder
================================================

What:  Builds the uniform JSON envelope returned by every endpoint:

           {
               "success": true,
               "data": {...} | [...],
               "message": "Products retrieved",
               "error": null,
               "requestId": "3f0c..."
           }

Why:   Clients branch on `success` and can always iterate or index `data`
       without a null check. Errors expose a client-safe message while the
       full error is logged server-side.
How:   `infer_resource_type()` decides whether a response is a collection
       or a single resource (pure function of path, method and data).
       `ResponseBuilder` turns data or an exception into an Envelope and a
       JSONResponse, logging each build with the request context.
       `Responder` binds a builder to one request for route handlers.

Envelope invariants:
    - `data` is never null: null becomes [] for collections, {} otherwise
    - `success` false ⇒ `error` is a non-empty string
    - `errorDetails` (traceback lines) only appears in development
    - Sensitive keys in `data` (password, apiKey, ...) are sent as "[REDACTED]"
    - A ValidationError carries its field errors in `data.validationErrors`

Resource-type heuristic:
    A list/tuple is a collection. Otherwise a GET whose last path segment
    is not an ID and looks plural or list-like (ends in "s", or contains
    list/all/search/find/query) is a collection. Everything else is single.
    Known false positives: singular words ending in "s" ("/api/status",
    "/api/auth/access"). Pass `resource_type` explicitly for those.
"""

import enum
import logging
import re
import traceback
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.context import RequestContext
from storefront.exceptions import StorefrontError, ValidationError
from storefront.logger import get_logger
from storefront.redaction import RESPONSE_SENSITIVE_FIELDS, sanitize_values

log = get_logger("storefront.responses")

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"
VALIDATION_ERROR_MESSAGE = "Validation failed"


# ══════════════════════════════════════════════════════════════════════════
# Resource-Type Inference
# ══════════════════════════════════════════════════════════════════════════

class ResourceType(str, enum.Enum):
    SINGLE = "single"
    COLLECTION = "collection"


_COLLECTION_SEGMENT = re.compile(r"(s$|list|all|search|find|query)")
_ID_SEGMENT = re.compile(
    r"^(\d+"
    r"|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
    r"|[0-9a-f]{24,})$",
    re.IGNORECASE,
)


def is_id_segment(segment: str) -> bool:
    return bool(_ID_SEGMENT.match(segment))


def infer_resource_type(path: str, method: str, data: Any = None) -> ResourceType:
    """
    Decide whether a response body represents a collection.

    >>> infer_resource_type("/api/users", "GET")
    <ResourceType.COLLECTION: 'collection'>
    >>> infer_resource_type("/api/users/42", "GET")
    <ResourceType.SINGLE: 'single'>
    """
    if isinstance(data, (list, tuple)):
        return ResourceType.COLLECTION

    segments = [s for s in path.split("?")[0].split("/") if s]
    if not segments or method.upper() != "GET":
        return ResourceType.SINGLE

    last = segments[-1]
    if is_id_segment(last):
        return ResourceType.SINGLE
    if _COLLECTION_SEGMENT.search(last.lower()):
        return ResourceType.COLLECTION
    return ResourceType.SINGLE


def empty_data(resource_type: ResourceType) -> Any:
    return [] if resource_type == ResourceType.COLLECTION else {}


# ══════════════════════════════════════════════════════════════════════════
# Envelope Model
# ══════════════════════════════════════════════════════════════════════════

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")
    has_next: bool = Field(alias="hasNext")
    has_prev: bool = Field(alias="hasPrev")

    model_config = {"populate_by_name": True}

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class Envelope(BaseModel):
    """The wire shape of every API response."""

    success: bool
    data: Any = Field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None
    request_id: str = Field(default="", alias="requestId")
    pagination: Optional[Pagination] = None
    error_details: Optional[List[str]] = Field(default=None, alias="errorDetails")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_invariants(self) -> "Envelope":
        if self.data is None:
            raise ValueError("envelope data must not be null")
        if not self.success and not self.error:
            raise ValueError("failed envelopes must carry an error message")
        return self

    def to_wire(self) -> Dict[str, Any]:
        body = {
            "success": self.success,
            "data": jsonable_encoder(self.data),
            "message": self.message,
            "error": self.error,
            "requestId": self.request_id,
        }
        if self.pagination is not None:
            body["pagination"] = self.pagination.model_dump(by_alias=True)
        if self.error_details is not None:
            body["errorDetails"] = self.error_details
        return body


# ══════════════════════════════════════════════════════════════════════════
# Builder
# ══════════════════════════════════════════════════════════════════════════

def _status_for(error: BaseException) -> int:
    if isinstance(error, StorefrontError):
        return error.status_code
    if isinstance(error, StarletteHTTPException):
        return error.status_code
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return status if isinstance(status, int) and 400 <= status < 600 else 500


class ResponseBuilder:
    """
    Produces envelopes and JSONResponses.

    One instance per app (built in create_app). Stateless apart from the
    environment flag that controls how much of an error the client sees.
    """

    def __init__(
        self,
        environment: str = "development",
        redact_fields: FrozenSet[str] = RESPONSE_SENSITIVE_FIELDS,
    ):
        self.environment = environment
        self.redact_fields = redact_fields

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # ── Success ───────────────────────────────────────────────────────────
    def build_success(
        self,
        ctx: Optional[RequestContext],
        data: Any = None,
        message: Optional[str] = None,
        resource_type: Optional[ResourceType] = None,
        pagination: Optional[Pagination] = None,
    ) -> Envelope:
        if resource_type is None:
            resource_type = infer_resource_type(
                ctx.path if ctx else "", ctx.method if ctx else "", data
            )
        if data is None:
            data = empty_data(resource_type)
        else:
            data = sanitize_values(jsonable_encoder(data), self.redact_fields)
        return Envelope(
            success=True,
            data=data,
            message=message,
            request_id=ctx.request_id if ctx else "",
            pagination=pagination,
        )

    def success(
        self,
        ctx: Optional[RequestContext],
        data: Any = None,
        message: Optional[str] = None,
        status_code: int = 200,
        resource_type: Optional[ResourceType] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> JSONResponse:
        if resource_type is None:
            resource_type = infer_resource_type(
                ctx.path if ctx else "", ctx.method if ctx else "", data
            )
        envelope = self.build_success(ctx, data, message, resource_type)
        log.info(
            "Response %d: %s", status_code, message or "success",
            ctx=ctx, status_code=status_code, resource_type=resource_type.value,
        )
        return JSONResponse(status_code=status_code, content=envelope.to_wire(), headers=headers)

    def created(
        self,
        ctx: Optional[RequestContext],
        data: Any = None,
        message: Optional[str] = "Created successfully",
    ) -> JSONResponse:
        return self.success(ctx, data, message, status_code=201, resource_type=ResourceType.SINGLE)

    def paginated(
        self,
        ctx: Optional[RequestContext],
        items: List[Any],
        page: int,
        limit: int,
        total: int,
        message: Optional[str] = None,
    ) -> JSONResponse:
        pagination = Pagination.build(page, limit, total)
        envelope = self.build_success(
            ctx, list(items), message, ResourceType.COLLECTION, pagination
        )
        log.info(
            "Response 200: %s", message or "success",
            ctx=ctx, status_code=200, resource_type=ResourceType.COLLECTION.value,
            total=total, page=page,
        )
        return JSONResponse(status_code=200, content=envelope.to_wire())

    # ── Errors ────────────────────────────────────────────────────────────
    def client_message_for(self, error: Any, client_message: Optional[str] = None) -> str:
        """What the caller is allowed to see about `error`."""
        if client_message:
            return client_message
        if isinstance(error, StorefrontError):
            return error.client_message
        if isinstance(error, StarletteHTTPException):
            return str(error.detail) if error.detail else GENERIC_ERROR_MESSAGE
        if isinstance(error, str):
            return error or GENERIC_ERROR_MESSAGE
        if self.is_production:
            return GENERIC_ERROR_MESSAGE
        return str(error) or GENERIC_ERROR_MESSAGE

    def build_error(
        self,
        ctx: Optional[RequestContext],
        error: Any,
        client_message: Optional[str] = None,
        data: Any = None,
    ) -> Envelope:
        details = None
        if (
            self.environment == "development"
            and isinstance(error, BaseException)
            and error.__traceback__ is not None
        ):
            details = traceback.format_exception(type(error), error, error.__traceback__)
        if data is None and isinstance(error, ValidationError) and error.errors:
            data = {"validationErrors": dict(error.errors)}
        return Envelope(
            success=False,
            data=data if data is not None else {},
            error=self.client_message_for(error, client_message),
            request_id=ctx.request_id if ctx else "",
            error_details=details,
        )

    def error(
        self,
        ctx: Optional[RequestContext],
        error: Any,
        status_code: Optional[int] = None,
        client_message: Optional[str] = None,
        data: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> JSONResponse:
        """
        Log `error` in full and return the client-safe error envelope.

        `error` may be an exception or a plain message. The status comes
        from the exception unless given explicitly.
        """
        if status_code is None:
            status_code = _status_for(error) if isinstance(error, BaseException) else 500

        if isinstance(error, StorefrontError):
            level = error.log_level
            log_fields = dict(error.context)
        else:
            level = logging.ERROR if status_code >= 500 else logging.WARNING
            log_fields = {}
        exc_info = (
            error
            if isinstance(error, BaseException)
            and not isinstance(error, (StorefrontError, StarletteHTTPException))
            else None
        )
        log.log(
            level,
            "Request failed with %d: %s",
            status_code,
            getattr(error, "message", None) or str(error),
            ctx=ctx,
            exc_info=exc_info,
            status_code=status_code,
            error_type=type(error).__name__,
            error_context=log_fields,
        )

        envelope = self.build_error(ctx, error, client_message, data)
        return JSONResponse(status_code=status_code, content=envelope.to_wire(), headers=headers)

    def validation_error(
        self,
        ctx: Optional[RequestContext],
        errors: Mapping[str, Any],
        client_message: Optional[str] = None,
    ) -> JSONResponse:
        message = client_message or VALIDATION_ERROR_MESSAGE
        log.warning(
            "Validation failed: %s", ", ".join(str(k) for k in errors) or "request",
            ctx=ctx, status_code=400, fields=list(errors),
        )
        envelope = Envelope(
            success=False,
            data={"validationErrors": dict(errors)},
            error=message,
            request_id=ctx.request_id if ctx else "",
        )
        return JSONResponse(status_code=400, content=envelope.to_wire())


class Responder:
    """
    A ResponseBuilder bound to one request.

    Injected into route handlers so they can write
    `return responder.success(products, "Products retrieved")`.
    """

    def __init__(self, builder: ResponseBuilder, ctx: RequestContext):
        self.builder = builder
        self.ctx = ctx

    def success(self, data: Any = None, message: Optional[str] = None, status_code: int = 200,
                resource_type: Optional[ResourceType] = None) -> JSONResponse:
        return self.builder.success(self.ctx, data, message, status_code, resource_type)

    def created(self, data: Any = None, message: Optional[str] = "Created successfully") -> JSONResponse:
        return self.builder.created(self.ctx, data, message)

    def paginated(self, items: List[Any], page: int, limit: int, total: int,
                  message: Optional[str] = None) -> JSONResponse:
        return self.builder.paginated(self.ctx, items, page, limit, total, message)

    def error(self, error: Any, status_code: Optional[int] = None,
              client_message: Optional[str] = None, data: Any = None) -> JSONResponse:
        return self.builder.error(self.ctx, error, status_code, client_message, data)

    def validation_error(self, errors: Mapping[str, Any], client_message: Optional[str] = None) -> JSONResponse:
        return self.builder.validation_error(self.ctx, errors, client_message)
