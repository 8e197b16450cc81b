"""Credit ledger schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class MonthlyLimitRead(BaseModel):
    user_id: UUID
    user_role: str
    month: str
    total_calls: int
    max_calls: int
    remaining_calls: int

    model_config = {"from_attributes": True}


class CreditAwardRequest(BaseModel):
    rep_id: UUID
    dm_id: UUID


class CallCreditRead(BaseModel):
    id: UUID
    rep_id: UUID
    dm_id: UUID
    month: str
    source: str
    credit_amount: int
    earned_at: datetime

    model_config = {"from_attributes": True}


class CreditAwardRead(BaseModel):
    success: bool
    reason: str
    message: str
    credit: CallCreditRead | None = None


class CreditEntriesRead(BaseModel):
    rep_id: UUID
    total_credits: int
    credits: list[CallCreditRead]
