"""Suspension schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class SuspensionRead(BaseModel):
    is_active: bool
    start_date: datetime | None
    end_date: datetime | None
    reason: str | None
    kind: str | None
    triggered_by: str | None = None
    lifted_at: datetime | None = None
    lifted_by_id: UUID | None = None
    lift_reason: str | None = None

    model_config = {"from_attributes": True}


class SuspensionStatusRead(BaseModel):
    user_id: UUID
    is_suspended: bool
    message: str | None = None
    days_remaining: int | None = None
    suspension: SuspensionRead | None = None


class SuspendedUserRead(BaseModel):
    user_id: UUID
    email: str
    role: str
    flags_received: int
    suspension: SuspensionRead


class SuspensionCreate(BaseModel):
    """Administrative suspension. Violation suspensions come from flags only."""
    kind: Literal["fixed_30_day", "manual"] = "fixed_30_day"
    reason: str = Field(..., min_length=1, max_length=500)
    days: int | None = Field(None, ge=1, le=365)
    triggered_by: str = Field("admin", max_length=50)


class SuspensionLift(BaseModel):
    lifted_by: UUID | None = None
    reason: str | None = Field(None, max_length=500)
