"""Booking schemas - eligibility, slots and call requests."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class EligibilityRead(BaseModel):
    """Whether a user may book right now."""
    user_id: UUID
    can_book: bool
    remaining_calls: int
    reason: str | None = None
    message: str | None = None


class SlotRead(BaseModel):
    start: datetime
    end: datetime
    is_available: bool
    blocked_by: list[str] = []


class DaySlotsRead(BaseModel):
    organizer_id: UUID
    counterparty_id: UUID
    date: str
    timezone: str
    slots: list[SlotRead]


class CallCreate(BaseModel):
    """Schema for requesting a call."""
    organizer_id: UUID
    counterparty_id: UUID
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_interval(self):
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class CallRead(BaseModel):
    id: UUID
    organizer_id: UUID
    counterparty_id: UUID
    scheduled_at: datetime
    end_time: datetime
    status: str
    remaining_calls: int | None = Field(None, description="Organizer allowance left this month")

    model_config = {"from_attributes": True}
