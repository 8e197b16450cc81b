"""Booking flow - suspension, allowance and availability composed into one request."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from callgate.db.models import ScheduledCall
from callgate.services import availability_service, credit_service


@dataclass
class BookingResult:
    call: ScheduledCall
    remaining_calls: int


def request_call(
    db: Session,
    organizer_id: UUID | str,
    counterparty_id: UUID | str,
    start: datetime,
    end: datetime,
    now: datetime | None = None,
) -> BookingResult:
    """
    Book a call for organizer_id.

    1. ensure_can_book (suspension, disconnected counterparties, balance)
    2. book_call with write-time conflict re-validation
    3. consume one call from the organizer's allowance

    Steps 2 and 3 share one transaction: a call is never stored without its
    allowance being charged, and vice versa.
    """
    now = now or datetime.now(timezone.utc)
    credit_service.ensure_can_book(db, organizer_id, now=now)

    try:
        call = availability_service.book_call(
            db, organizer_id, counterparty_id, start, end, now=now, commit=False
        )
        limit = credit_service.consume_call(
            db, organizer_id, month=credit_service.month_key(now), commit=False
        )
    except Exception:
        db.rollback()
        raise

    db.commit()
    db.refresh(call)
    return BookingResult(call=call, remaining_calls=limit.remaining_calls)
