"""Pydantic models for therapy sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, model_validator

SessionStatus = Literal["scheduled", "confirmed", "completed", "no-show", "cancelled"]
SessionMedium = Literal["telehealth", "in-person"]


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SessionCreate(BaseModel):
    client_id: int
    therapist_id: int | None = None
    start_time: datetime
    end_time: datetime
    session_type: str = Field(min_length=1, max_length=64)
    medium: SessionMedium = "in-person"
    notes: str | None = None
    location: str | None = Field(default=None, max_length=512)
    cpt_code: str | None = Field(default=None, max_length=16)

    @model_validator(mode="after")
    def check_time_range(self) -> "SessionCreate":
        if _aware(self.end_time) <= _aware(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class SessionUpdate(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    session_type: str | None = Field(default=None, min_length=1, max_length=64)
    medium: SessionMedium | None = None
    notes: str | None = None
    location: str | None = Field(default=None, max_length=512)
    cpt_code: str | None = Field(default=None, max_length=16)


class SessionStatusUpdate(BaseModel):
    status: SessionStatus
    cancel_reason: str | None = None


class SessionOut(BaseModel):
    id: int
    client_id: int
    therapist_id: int
    start_time: datetime
    end_time: datetime
    session_type: str
    medium: str
    status: str
    notes: str | None = None
    location: str | None = None
    cpt_code: str | None = None
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
