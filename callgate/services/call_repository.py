"""Call repository - one read view over current and legacy call storage."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, NamedTuple
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from callgate.db.enums import CallStatus
from callgate.db.models import LegacyCallLog, ScheduledCall
from callgate.utils.identifiers import normalize_id


class CallInterval(NamedTuple):
    """A blocking call, whichever table it came from."""
    id: UUID
    organizer_id: UUID
    counterparty_id: UUID
    start: datetime
    end: datetime
    status: str
    source: str  # "scheduled_calls" | "call_logs"


def _collect(
    db: Session,
    party_id: UUID,
    time_filter: Callable,
    exclude_id: UUID | None,
) -> list[CallInterval]:
    """Read both tables, drop rows already seen by id, sort by start."""
    seen: set[UUID] = set()
    calls: list[CallInterval] = []
    for model in (ScheduledCall, LegacyCallLog):
        query = (
            select(model)
            .where(
                or_(model.organizer_id == party_id, model.counterparty_id == party_id),
                model.status.in_(CallStatus.blocking()),
                *time_filter(model),
            )
            .order_by(model.scheduled_at)
        )
        for row in db.execute(query).scalars():
            if row.id in seen or row.id == exclude_id:
                continue
            seen.add(row.id)
            calls.append(
                CallInterval(
                    id=row.id,
                    organizer_id=row.organizer_id,
                    counterparty_id=row.counterparty_id,
                    start=row.scheduled_at,
                    end=row.end_time,
                    status=row.status,
                    source=model.__tablename__,
                )
            )
    calls.sort(key=lambda c: c.start)
    return calls


def list_calls_in_window(
    db: Session,
    party_id: UUID | str,
    window_start: datetime,
    window_end: datetime,
    exclude_id: UUID | None = None,
) -> list[CallInterval]:
    """
    Scheduled/completed calls involving party_id (either side) whose start
    falls inside [window_start, window_end).
    """
    return _collect(
        db,
        normalize_id(party_id),
        lambda m: (m.scheduled_at >= window_start, m.scheduled_at < window_end),
        exclude_id,
    )


def list_overlapping_calls(
    db: Session,
    party_id: UUID | str,
    start: datetime,
    end: datetime,
    exclude_id: UUID | None = None,
) -> list[CallInterval]:
    """Blocking calls of party_id that overlap the half-open interval [start, end)."""
    return _collect(
        db,
        normalize_id(party_id),
        lambda m: (m.scheduled_at < end, m.end_time > start),
        exclude_id,
    )
