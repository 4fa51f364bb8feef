"""
Storefront Backend — Request Context
======================================

What:  A small value object describing the request being served.
Why:   The logger, the envelope builder and the audit recorder all need the
       request ID, correlation ID, caller and client details. Passing them
       explicitly keeps those components pure and easy to test; nothing
       reads ambient per-request globals.
How:   RequestContextMiddleware builds one RequestContext per request and
       stores it on `request.state.context`. Authentication fills in the
       user fields. Background jobs (webhook processing, cleanup) create
       their own with `RequestContext.system()`.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def new_request_id() -> str:
    return str(uuid.uuid4())


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RequestContext:
    request_id: str = field(default_factory=new_request_id)
    correlation_id: str = field(default_factory=new_correlation_id)
    method: str = ""
    path: str = ""
    query: str = ""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    session_token: Optional[str] = None
    # Set once a service has written an explicit audit record for this request
    audit_recorded: bool = False
    started_at: float = field(default_factory=time.perf_counter)

    @classmethod
    def system(cls, name: str = "system") -> "RequestContext":
        """Context for work not triggered by an HTTP request."""
        return cls(method="SYSTEM", path=name, ip_address=None, user_agent=name)

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)

    def log_fields(self) -> Dict[str, Any]:
        """Fields attached to every log record written for this request."""
        fields: Dict[str, Any] = {
            "request_id": self.request_id,
            "correlation_id": self.correlation_id,
        }
        if self.method:
            fields["method"] = self.method
        if self.path:
            fields["path"] = self.path
        if self.user_id:
            fields["user_id"] = self.user_id
        return fields
