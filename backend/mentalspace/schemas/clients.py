"""Pydantic models for clients."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

ClientStatus = Literal["active", "inactive", "onboarding", "discharged", "on-hold"]
ClientStatusFilter = Literal["active", "inactive", "onboarding", "discharged", "on-hold", "all"]
ClientSortField = Literal["first_name", "last_name", "email", "date_of_birth", "status", "created_at"]


class ClientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, min_length=7, max_length=32)
    date_of_birth: date | None = None
    address: str | None = None
    status: ClientStatus = "onboarding"
    primary_therapist_id: int | None = None
    referral_notes: str | None = None


class ClientUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=128)
    last_name: str | None = Field(default=None, min_length=1, max_length=128)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, min_length=7, max_length=32)
    date_of_birth: date | None = None
    address: str | None = None
    status: ClientStatus | None = None
    primary_therapist_id: int | None = None
    referral_notes: str | None = None


class ClientOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    status: str
    primary_therapist_id: int | None = None
    referral_notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ClientPage(BaseModel):
    items: list[ClientOut]
    total: int
    page: int
    limit: int
