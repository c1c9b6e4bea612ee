"""Pydantic models for staff accounts and authentication."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from mentalspace.auth.roles import ROLE_HIERARCHY


def _known_role(value: str | None) -> str | None:
    if value is not None and value not in ROLE_HIERARCHY:
        raise ValueError(f"Unknown role '{value}'")
    return value


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    username: str
    role: str


class MeResponse(BaseModel):
    id: int
    username: str
    role: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=128)
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)
    role: str = "user"
    license_type: str | None = None
    license_number: str | None = None

    @field_validator("role")
    @classmethod
    def check_role(cls, value: str | None) -> str | None:
        return _known_role(value)


class UserUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=128)
    last_name: str | None = Field(default=None, min_length=1, max_length=128)
    email: EmailStr | None = None
    role: str | None = None
    status: Literal["active", "inactive"] | None = None
    password: str | None = Field(default=None, min_length=8)

    @field_validator("role")
    @classmethod
    def check_role(cls, value: str | None) -> str | None:
        return _known_role(value)


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str
    license_type: str | None = None
    license_number: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
