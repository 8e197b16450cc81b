"""Calendar webhook endpoint."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.deps import get_db
from callgate.core.rate_limit import limiter
from callgate.routers.flags import flag_result_to_response
from callgate.schemas.calendar import CalendarConnectionEvent, CalendarConnectionRead
from callgate.schemas.credit import CallCreditRead, CreditAwardRead
from callgate.services.calendar_connection_service import handle_calendar_connection_change
from callgate.services.user_service import UserNotFoundError

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.post("/connection", response_model=CalendarConnectionRead)
@limiter.limit(settings.RATE_LIMIT_WEBHOOK)
def calendar_connection_changed(
    request: Request,
    data: CalendarConnectionEvent,
    db: Session = Depends(get_db),
):
    """Record a calendar connect/disconnect and apply its side effects."""
    try:
        result = handle_calendar_connection_change(db, data.user_id, data.connected)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")

    credit = None
    if result.credit is not None:
        credit = CreditAwardRead(
            success=result.credit.success,
            reason=result.credit.reason,
            message=result.credit.message,
            credit=(
                CallCreditRead.model_validate(result.credit.credit)
                if result.credit.credit
                else None
            ),
        )
    return CalendarConnectionRead(
        user_id=result.user_id,
        connected=result.connected,
        changed=result.changed,
        flag=flag_result_to_response(result.flag) if result.flag else None,
        credit=credit,
    )
