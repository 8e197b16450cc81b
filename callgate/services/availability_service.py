"""Availability resolver - busy intervals, slot generation and conflict-safe booking.

Busy data comes from two places:
- internal calls (current and legacy storage, merged by call_repository)
- the party's external calendar, when connected

An external fetch failure degrades to internal data only; it never makes a
party look free.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, NamedTuple
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.errors import PolicyViolationError
from callgate.core.structured_logging import build_log_context
from callgate.db.enums import CallStatus
from callgate.db.models import ScheduledCall, User
from callgate.services import audit_service, calendar_service, call_repository
from callgate.services.calendar_service import CalendarFetchError
from callgate.services.user_service import lock_user, require_user
from callgate.utils.working_days import is_working_day

logger = logging.getLogger(__name__)

INTERNAL = "internal"
EXTERNAL = "external"


class SlotConflictError(PolicyViolationError):
    """Requested interval overlaps an existing commitment."""

    reason = "slot_conflict"


class InvalidBookingWindowError(PolicyViolationError):
    """Requested interval is empty, reversed, or in the past."""

    reason = "invalid_booking_window"


# =============================================================================
# Types
# =============================================================================

class BusyInterval(NamedTuple):
    """A blocked period for one party."""
    start: datetime
    end: datetime
    source: str = INTERNAL
    call_id: UUID | None = None


@dataclass
class DaySlot:
    """A candidate slot and whether both parties are free for it."""
    start: datetime
    end: datetime
    is_available: bool
    blocked_by: list[str] = field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

def get_timezone(name: str | None) -> ZoneInfo:
    """ZoneInfo for name (DEFAULT_TIMEZONE when empty). Unknown names raise ValueError."""
    name = name or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def as_utc(value: datetime) -> datetime:
    """Timezone-aware UTC; naive inputs are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_window(day: date, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """
    Exact calendar day [00:00, next 00:00) in tz_name, as UTC datetimes.

    Uses local midnights rather than a +24h band so DST days and offsets
    never bleed into the neighbouring date.
    """
    tz = get_timezone(tz_name)
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def has_conflict(
    candidate_start: datetime,
    candidate_end: datetime,
    busy_intervals: Iterable[BusyInterval],
) -> bool:
    """Half-open overlap test: [a, b) and [c, d) overlap iff a < d and c < b."""
    return any(
        candidate_start < busy.end and busy.start < candidate_end
        for busy in busy_intervals
    )


def _overlapping(
    candidate_start: datetime,
    candidate_end: datetime,
    busy_intervals: Iterable[BusyInterval],
) -> list[BusyInterval]:
    return [
        busy for busy in busy_intervals
        if candidate_start < busy.end and busy.start < candidate_end
    ]


def _external_busy(
    db: Session,
    user: User,
    window_start: datetime,
    window_end: datetime,
) -> list[BusyInterval]:
    """External calendar busy periods clipped to the window; [] on failure."""
    if not user.has_connected_calendar:
        return []
    try:
        blocks = calendar_service.fetch_busy_blocks(db, user, window_start, window_end)
    except (CalendarFetchError, TimeoutError) as exc:
        logger.warning(
            "Calendar fetch failed, using internal calls only: %s",
            exc,
            extra=build_log_context(user_id=str(user.id)),
        )
        return []
    return [
        BusyInterval(start=as_utc(b["start"]), end=as_utc(b["end"]), source=EXTERNAL)
        for b in blocks
        if as_utc(b["start"]) < window_end and as_utc(b["end"]) > window_start
    ]


# =============================================================================
# Busy intervals
# =============================================================================

def get_busy_intervals(
    db: Session,
    party_id: UUID | str,
    window_start: datetime,
    window_end: datetime,
    include_external: bool = True,
) -> list[BusyInterval]:
    """
    Merge a party's internal calls with their external calendar for a window.

    Internal calls are included when they start inside [window_start, window_end)
    and are scheduled or completed. A call stored in both the current and legacy
    tables is counted once.
    """
    user = require_user(db, party_id)
    window_start = as_utc(window_start)
    window_end = as_utc(window_end)

    intervals = [
        BusyInterval(start=call.start, end=call.end, source=INTERNAL, call_id=call.id)
        for call in call_repository.list_calls_in_window(db, user.id, window_start, window_end)
    ]
    if include_external:
        intervals.extend(_external_busy(db, user, window_start, window_end))
    intervals.sort(key=lambda b: (b.start, b.end))
    return intervals


# =============================================================================
# Slots
# =============================================================================

def get_day_slots(
    db: Session,
    organizer_id: UUID | str,
    counterparty_id: UUID | str,
    day: date,
    tz_name: str | None = None,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> list[DaySlot]:
    """
    Candidate slots for one day, each checked against both parties.

    Slots start every SLOT_INTERVAL_MINUTES inside the working-hours window of
    the reference timezone (the counterparty's, unless tz_name is given).
    Non-working days yield no slots, and slots that already started are
    skipped.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    duration = duration_minutes or settings.SLOT_INTERVAL_MINUTES
    if duration <= 0:
        raise ValueError("duration_minutes must be positive")

    organizer = require_user(db, organizer_id)
    counterparty = require_user(db, counterparty_id)
    tz_name = tz_name or counterparty.timezone
    tz = get_timezone(tz_name)

    if not is_working_day(day):
        return []

    window_start, window_end = day_window(day, tz_name)
    busy_by_party = {
        "organizer": get_busy_intervals(db, organizer.id, window_start, window_end),
        "counterparty": get_busy_intervals(db, counterparty.id, window_start, window_end),
    }

    work_start = datetime.combine(day, time(settings.WORKING_HOURS_START), tzinfo=tz)
    work_end = datetime.combine(day, time(settings.WORKING_HOURS_END), tzinfo=tz)
    step = timedelta(minutes=settings.SLOT_INTERVAL_MINUTES)
    length = timedelta(minutes=duration)

    slots: list[DaySlot] = []
    current = work_start
    while current + length <= work_end:
        slot_start = current.astimezone(timezone.utc)
        slot_end = (current + length).astimezone(timezone.utc)
        current += step
        if slot_start < now:
            continue

        blocked_by = []
        for party, busy in busy_by_party.items():
            sources = {b.source for b in _overlapping(slot_start, slot_end, busy)}
            blocked_by.extend(f"{party}_{source}" for source in sorted(sources))
        slots.append(
            DaySlot(
                start=slot_start,
                end=slot_end,
                is_available=not blocked_by,
                blocked_by=blocked_by,
            )
        )
    return slots


# =============================================================================
# Booking
# =============================================================================

def _find_conflicts(
    db: Session,
    party_ids: Iterable[UUID],
    start: datetime,
    end: datetime,
    exclude_id: UUID | None = None,
) -> list[call_repository.CallInterval]:
    """Internal calls of any listed party that overlap [start, end)."""
    conflicts: list[call_repository.CallInterval] = []
    for party_id in party_ids:
        conflicts.extend(
            call_repository.list_overlapping_calls(db, party_id, start, end, exclude_id=exclude_id)
        )
    return conflicts


def book_call(
    db: Session,
    organizer_id: UUID | str,
    counterparty_id: UUID | str,
    start: datetime,
    end: datetime,
    now: datetime | None = None,
    commit: bool = True,
) -> ScheduledCall:
    """
    Create a ScheduledCall after re-validating both parties at write time.

    - External busy periods are checked first (outside any lock).
    - Both user rows are then locked in id order, internal calls re-checked,
      the call inserted, and the overlap scan repeated excluding the new row.
      Any overlap found after insert rolls the transaction back.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    start = as_utc(start)
    end = as_utc(end)
    if end <= start:
        raise InvalidBookingWindowError("Call end must be after its start")
    if start < now:
        raise InvalidBookingWindowError("Cannot book a call in the past")

    organizer = require_user(db, organizer_id)
    counterparty = require_user(db, counterparty_id)
    if organizer.id == counterparty.id:
        raise InvalidBookingWindowError("Organizer and counterparty must differ")

    for party in (organizer, counterparty):
        if has_conflict(start, end, _external_busy(db, party, start, end)):
            raise SlotConflictError("Selected time is no longer available")

    party_ids = sorted([organizer.id, counterparty.id], key=str)
    for party_id in party_ids:
        lock_user(db, party_id)

    if _find_conflicts(db, party_ids, start, end):
        db.rollback()
        raise SlotConflictError("Selected time is no longer available")

    call = ScheduledCall(
        organizer_id=organizer.id,
        counterparty_id=counterparty.id,
        scheduled_at=start,
        end_time=end,
        status=CallStatus.SCHEDULED.value,
    )
    db.add(call)
    db.flush()

    if _find_conflicts(db, party_ids, start, end, exclude_id=call.id):
        db.rollback()
        logger.warning(
            "Concurrent booking detected after insert; rolled back",
            extra=build_log_context(
                user_id=str(organizer.id), counterparty_id=str(counterparty.id)
            ),
        )
        raise SlotConflictError("Selected time is no longer available")

    if commit:
        db.commit()
        db.refresh(call)

    logger.info(
        "Call booked for %s",
        start.isoformat(),
        extra=build_log_context(user_id=str(organizer.id), counterparty_id=str(counterparty.id)),
    )
    audit_service.log_event(
        "call_booked",
        actor_id=organizer.id,
        target_id=counterparty.id,
        details={"call_id": str(call.id), "start": start.isoformat(), "end": end.isoformat()},
    )
    return call
