"""Credit ledger API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from callgate.core.deps import get_db
from callgate.core.errors import NotFoundError
from callgate.schemas.credit import (
    CallCreditRead,
    CreditAwardRead,
    CreditAwardRequest,
    CreditEntriesRead,
    MonthlyLimitRead,
)
from callgate.services import credit_service, user_service

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/{user_id}/limit", response_model=MonthlyLimitRead)
def get_monthly_limit(
    user_id: UUID,
    month: str | None = Query(None, pattern=r"^\d{4}-\d{2}$"),
    db: Session = Depends(get_db),
):
    """Monthly allowance with max_calls recomputed from current relationships."""
    try:
        return credit_service.get_monthly_limit(db, user_id, month=month)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found")


@router.post("/award", response_model=CreditAwardRead)
def award_credit(data: CreditAwardRequest, db: Session = Depends(get_db)):
    """Award an onboarding credit. A refusal is a normal response, not an error."""
    result = credit_service.award_counterparty_credit(db, data.rep_id, data.dm_id)
    return CreditAwardRead(
        success=result.success,
        reason=result.reason,
        message=result.message,
        credit=CallCreditRead.model_validate(result.credit) if result.credit else None,
    )


@router.get("/{rep_id}/entries", response_model=CreditEntriesRead)
def list_credit_entries(rep_id: UUID, db: Session = Depends(get_db)):
    """Active credit ledger entries for a sales rep, newest first."""
    if not user_service.get_user_by_id(db, rep_id):
        raise HTTPException(status_code=404, detail="User not found")
    credits = credit_service.get_rep_credits(db, rep_id)
    return CreditEntriesRead(
        rep_id=rep_id,
        total_credits=credit_service.get_rep_total_credits(db, rep_id),
        credits=[CallCreditRead.model_validate(c) for c in credits],
    )
