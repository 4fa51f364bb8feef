"""
Storefront Backend — Auth Request/Response Schemas
====================================================

What:  API contracts for registration, login and the current user.
Why:   Pydantic validates input before any service code runs; failures are
       rendered as a 400 envelope with per-field `validationErrors`.

Wire format uses camelCase (firstName); Python code uses snake_case.
"""

import re
import uuid
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL.match(value):
        raise ValueError("Invalid email address")
    return value


class RegisterRequest(BaseModel):
    email: str = Field(max_length=255, description="Login email (case-insensitive)")
    # bcrypt only considers the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    model_config = CAMEL

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=72)

    model_config = CAMEL

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash."""

    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    created_at: datetime

    model_config = {**CAMEL, "from_attributes": True}


class LoginResponse(BaseModel):
    user: UserResponse
    access_token: str
    token_type: str = "Bearer"
    permissions: List[str] = Field(default_factory=list)

    model_config = CAMEL
