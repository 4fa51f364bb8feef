"""
Storefront Backend — Sensitive Data Redaction
===============================================

What:  The redaction rules shared by the logger, the envelope builder and
       the audit recorder.
Why:   Passwords, tokens and card data must never reach a log file or an
       audit row. Keeping the rules in one module means every sink redacts
       the same way.
How:   Two strategies over the same recursive walk:

       sanitize_for_logs()   Loose substring match on the lower-cased key
                             ("userPassword" and "x_api_key" both match).
                             Strings become "[REDACTED] (n characters)" so
                             the log still shows that a value was present.
                             Email and phone values are masked.

       sanitize_values()     Exact match on the normalized key
                             (lower-case, "_" and "-" removed) so that
                             "api_key" and "apiKey" are one rule. Values
                             become "[REDACTED]". Used for audit before/after
                             snapshots, where false positives would destroy
                             legitimate data ("keywords", "monkey"). The envelope
                             builder applies the same rules to response
                             data.

Both return new structures; the input is never mutated.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, Iterable
from uuid import UUID

REDACTED = "[REDACTED]"
MAX_DEPTH = 10

# Substrings that mark a log metadata key as sensitive
LOG_SENSITIVE_FIELDS: FrozenSet[str] = frozenset(
    k.lower()
    for k in (
        "password",
        "token",
        "accessToken",
        "refreshToken",
        "verificationToken",
        "reset_password_token",
        "secret",
        "apiKey",
        "api_key",
        "key",
        "apiSecret",
        "credential",
        "authorization",
        "cookie",
        "ssn",
        "credit_card",
        "creditCard",
    )
)

# Normalized key names redacted in audit snapshots
AUDIT_SENSITIVE_FIELDS: FrozenSet[str] = frozenset(
    (
        "password",
        "passwordhash",
        "token",
        "accesstoken",
        "refreshtoken",
        "secret",
        "apikey",
        "creditcard",
        "ssn",
        "socialsecurity",
        "verificationtoken",
        "resetpasswordtoken",
    )
)

# Redacted in API responses. The access token is omitted: login hands it to
# its owner on purpose.
RESPONSE_SENSITIVE_FIELDS: FrozenSet[str] = AUDIT_SENSITIVE_FIELDS - {"accesstoken"}


def normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def _is_log_sensitive(key: str, fields: Iterable[str]) -> bool:
    lowered = key.lower()
    return any(field in lowered for field in fields)


def mask_email(value: str) -> str:
    """`jane.doe@example.com` → `j***@example.com`"""
    local, _, domain = value.partition("@")
    if not local:
        return REDACTED
    return f"{local[0]}***@{domain}"


def mask_phone(value: str) -> str:
    digits = [c for c in value if c.isdigit()]
    if len(digits) <= 4:
        return REDACTED
    return "***" + "".join(digits[-4:])


# ══════════════════════════════════════════════════════════════════════════
# Log sanitization
# ══════════════════════════════════════════════════════════════════════════

def sanitize_for_logs(
    data: Any,
    sensitive_fields: FrozenSet[str] = LOG_SENSITIVE_FIELDS,
    _depth: int = 0,
) -> Any:
    """
    Return a copy of `data` safe to write to a log sink.

    Non-container values are returned unchanged; dict keys are inspected at
    every nesting level.
    """
    if _depth > MAX_DEPTH:
        return "[MAX_DEPTH]"

    if isinstance(data, dict):
        clean = {}
        for key, value in data.items():
            key_str = str(key)
            lowered = key_str.lower()
            if _is_log_sensitive(key_str, sensitive_fields):
                if isinstance(value, str):
                    clean[key] = f"{REDACTED} ({len(value)} characters)"
                else:
                    clean[key] = REDACTED
            elif "email" in lowered and isinstance(value, str) and "@" in value:
                clean[key] = mask_email(value)
            elif ("phone" in lowered or "mobile" in lowered) and isinstance(value, (str, int)):
                clean[key] = mask_phone(str(value))
            else:
                clean[key] = sanitize_for_logs(value, sensitive_fields, _depth + 1)
        return clean

    if isinstance(data, (list, tuple, set)):
        return [sanitize_for_logs(item, sensitive_fields, _depth + 1) for item in data]

    return data


# ══════════════════════════════════════════════════════════════════════════
# Audit value sanitization
# ══════════════════════════════════════════════════════════════════════════

def to_jsonable(value: Any) -> Any:
    """Coerce scalar values that JSON columns cannot store."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    return value


def sanitize_values(
    data: Any,
    sensitive_fields: FrozenSet[str] = AUDIT_SENSITIVE_FIELDS,
    _depth: int = 0,
) -> Any:
    """
    Recursively redact sensitive keys for an audit snapshot.

    `None` stays `None` so "no previous state" remains distinguishable from
    "previous state was empty".
    """
    if data is None:
        return None
    if _depth > MAX_DEPTH:
        return "[MAX_DEPTH]"

    if isinstance(data, dict):
        return {
            str(key): (
                REDACTED
                if normalize_key(key) in sensitive_fields
                else sanitize_values(value, sensitive_fields, _depth + 1)
            )
            for key, value in data.items()
        }

    if isinstance(data, (list, tuple, set)):
        return [sanitize_values(item, sensitive_fields, _depth + 1) for item in data]

    return to_jsonable(data)
