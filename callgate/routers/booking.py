"""Booking API endpoints - eligibility, day slots and call requests."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.deps import get_db
from callgate.core.errors import NotFoundError, PolicyViolationError
from callgate.schemas.booking import (
    CallCreate,
    CallRead,
    DaySlotsRead,
    EligibilityRead,
    SlotRead,
)
from callgate.services import (
    availability_service,
    booking_service,
    credit_service,
    user_service,
)
from callgate.services.suspension_service import AccountSuspendedError

router = APIRouter(prefix="/booking", tags=["booking"])


@router.get("/eligibility/{user_id}", response_model=EligibilityRead)
def get_eligibility(user_id: UUID, db: Session = Depends(get_db)):
    """Can this user book a call right now, and if not, why."""
    try:
        eligibility = credit_service.can_book(db, user_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return EligibilityRead(
        user_id=user_id,
        can_book=eligibility.can_book,
        remaining_calls=eligibility.remaining_calls,
        reason=eligibility.reason,
        message=eligibility.message,
    )


@router.get("/slots", response_model=DaySlotsRead)
def get_slots(
    organizer_id: UUID,
    counterparty_id: UUID,
    day: date = Query(..., alias="date"),
    timezone: str | None = None,
    duration_minutes: int | None = Query(None, ge=15, le=240),
    db: Session = Depends(get_db),
):
    """Candidate slots for one day, checked against both parties."""
    try:
        counterparty = user_service.require_user(db, counterparty_id)
        tz_name = timezone or counterparty.timezone or settings.DEFAULT_TIMEZONE
        slots = availability_service.get_day_slots(
            db,
            organizer_id,
            counterparty.id,
            day,
            tz_name=tz_name,
            duration_minutes=duration_minutes,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return DaySlotsRead(
        organizer_id=organizer_id,
        counterparty_id=counterparty_id,
        date=day.isoformat(),
        timezone=tz_name,
        slots=[SlotRead(**vars(slot)) for slot in slots],
    )


@router.post("/calls", response_model=CallRead, status_code=status.HTTP_201_CREATED)
def create_call(data: CallCreate, db: Session = Depends(get_db)):
    """Book a call: suspension, allowance and availability are all enforced."""
    try:
        result = booking_service.request_call(
            db, data.organizer_id, data.counterparty_id, data.start, data.end
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except AccountSuspendedError as e:
        raise HTTPException(status_code=403, detail={"reason": e.reason, "message": e.message})
    except PolicyViolationError as e:
        raise HTTPException(status_code=409, detail={"reason": e.reason, "message": e.message})

    response = CallRead.model_validate(result.call)
    response.remaining_calls = result.remaining_calls
    return response
