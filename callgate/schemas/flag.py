"""Flag schemas - Pydantic models for the moderation API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from callgate.db.enums import FlagCategory, FlagSeverity, FlagStatus


class FlagCreate(BaseModel):
    """Schema for raising a flag."""
    target_id: UUID
    reporter_id: UUID | None = None
    category: FlagCategory
    description: str = Field(..., min_length=1, max_length=2000)
    subject: str | None = Field(None, max_length=255, description="Event reference used for dedupe")
    severity: FlagSeverity = FlagSeverity.MEDIUM


class FlagStatusUpdate(BaseModel):
    status: FlagStatus
    resolution: str | None = Field(None, max_length=2000)
    updated_by: UUID | None = None


class FlagRead(BaseModel):
    id: UUID
    target_id: UUID
    reporter_id: UUID | None
    category: str
    description: str
    severity: str
    status: str
    resolution: str | None
    resolved_by_id: UUID | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class FlagRaiseRead(BaseModel):
    """Outcome of a raise: created=False means the report was a duplicate."""
    created: bool
    flags_received: int
    suspended: bool
    flag: FlagRead | None = None
    duplicate_of: UUID | None = None


class FlagStatsRead(BaseModel):
    open: int
    investigating: int
    resolved: int
    dismissed: int
    total: int
    suspended_users: int


class ViolationResetRequest(BaseModel):
    reset_by: UUID | None = None
    reason: str | None = Field(None, max_length=500)
