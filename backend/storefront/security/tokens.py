"""
Storefront Backend — Access Tokens (JWT, HS256)
=================================================

What:  Issues and verifies the signed bearer tokens used by the API.
How:   Compact JWS with an HS256 signature over `header.payload`, built from
       hmac/hashlib/base64. Claims: sub, email, role, permissions, jti, iat,
       exp and iss.

Verification distinguishes an expired token from an invalid one so the
client can tell "log in again" apart from "this token was tampered with".
"""

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional


class TokenError(Exception):
    """Token failed verification."""


class TokenExpiredError(TokenError):
    """Signature is valid but `exp` has passed."""


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@dataclass
class JWTConfig:
    algorithm: str = "HS256"
    expires_minutes: int = 24 * 60
    issuer: Optional[str] = None


class JWTHandler:
    def __init__(self, secret: str, config: Optional[JWTConfig] = None) -> None:
        self.secret = secret.encode()
        self.config = config or JWTConfig()

    @classmethod
    def from_settings(cls, settings) -> "JWTHandler":
        return cls(
            settings.jwt_secret,
            JWTConfig(expires_minutes=settings.jwt_expires_minutes, issuer=settings.jwt_issuer),
        )

    def _sign(self, signing_input: bytes) -> bytes:
        return hmac.new(self.secret, signing_input, hashlib.sha256).digest()

    def create_token(self, subject: str, claims: Optional[Dict[str, Any]] = None) -> str:
        header = {"alg": self.config.algorithm, "typ": "JWT"}
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": subject,
            "iat": now,
            "exp": now + (self.config.expires_minutes * 60),
            # Unique per token so two logins in the same second never collide
            "jti": uuid.uuid4().hex,
        }
        if self.config.issuer:
            payload["iss"] = self.config.issuer
        if claims:
            payload.update(claims)

        header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
        payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_b64}.{payload_b64}".encode()
        return f"{header_b64}.{payload_b64}.{_b64url_encode(self._sign(signing_input))}"

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Return the claims of a valid token.

        Raises:
            TokenExpiredError: signature fine, token expired
            TokenError: anything else wrong with the token
        """
        try:
            header_b64, payload_b64, signature_b64 = token.split(".")
            header = json.loads(_b64url_decode(header_b64))
            signature = _b64url_decode(signature_b64)
        except (ValueError, TypeError) as e:
            raise TokenError(f"Malformed token: {e}")

        if header.get("alg") != self.config.algorithm:
            raise TokenError("Unexpected token algorithm")
        expected = self._sign(f"{header_b64}.{payload_b64}".encode())
        if not hmac.compare_digest(expected, signature):
            raise TokenError("Invalid signature")

        try:
            payload = json.loads(_b64url_decode(payload_b64))
        except (ValueError, TypeError) as e:
            raise TokenError(f"Malformed payload: {e}")

        if payload.get("exp") is not None and int(time.time()) > int(payload["exp"]):
            raise TokenExpiredError("Token expired")
        if self.config.issuer and payload.get("iss") != self.config.issuer:
            raise TokenError("Invalid issuer")
        return payload
