"""Suspension state machine for the suspension embedded in each user row.

States:
- None: no active suspension
- Active: is_active and end_date in the future
- Expired: is_active but end_date in the past; resolved lazily to None on read
- Lifted: deactivated early by an administrator

There is no permanent ban: a new violation after a lift/expiry simply applies
a fresh window. Each new suspension overwrites the previous one.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.errors import PolicyViolationError
from callgate.core.structured_logging import build_log_context
from callgate.db.enums import SuspensionKind
from callgate.db.models import Suspension, User
from callgate.services import audit_service, notification_service
from callgate.services.user_service import require_user
from callgate.utils.identifiers import normalize_optional_id

logger = logging.getLogger(__name__)


class AccountSuspendedError(PolicyViolationError):
    """Actor is currently suspended."""

    reason = "account_suspended"


class SuspensionKindNotAllowedError(PolicyViolationError):
    """Requested suspension kind cannot be applied through this path."""

    reason = "suspension_kind_not_allowed"


@dataclass
class SuspensionCheck:
    """Result of check_status."""
    is_suspended: bool
    suspension: Suspension | None = None
    message: str | None = None
    days_remaining: int | None = None


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _days_remaining(end_date: datetime, now: datetime) -> int:
    return max(0, math.ceil((end_date - now).total_seconds() / 86400))


def _suspension_message(suspension: Suspension, now: datetime) -> str:
    if suspension.end_date is None:
        return f"Your account has been suspended due to {suspension.reason}."
    days = _days_remaining(suspension.end_date, now)
    return (
        f"Your account has been suspended due to {suspension.reason}. "
        f"Suspension will be lifted on {suspension.end_date.strftime('%a %b %d %Y')} "
        f"({days} days remaining)."
    )


def _expire(db: Session, user_id: UUID) -> None:
    """Lazy Active → None transition. A no-op if another reader already did it."""
    db.execute(
        update(User)
        .where(User.id == user_id, User.suspension_is_active.is_(True))
        .values(suspension_is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def _write_suspension(
    user: User,
    *,
    kind: SuspensionKind,
    reason: str,
    start: datetime,
    days: int,
    triggered_by: str,
) -> None:
    user.suspension_is_active = True
    user.suspension_start_date = start
    user.suspension_end_date = start + timedelta(days=days)
    user.suspension_reason = reason
    user.suspension_kind = kind.value
    user.suspension_triggered_by = triggered_by
    user.suspension_lifted_at = None
    user.suspension_lifted_by_id = None
    user.suspension_lift_reason = None


# =============================================================================
# Status
# =============================================================================

def check_status(
    db: Session,
    user_id: UUID | str,
    now: datetime | None = None,
) -> SuspensionCheck:
    """
    Report whether a user is currently suspended.

    An active suspension whose end_date has passed is flipped to inactive here.
    """
    now = _now(now)
    user = require_user(db, user_id)
    suspension = user.suspension
    if not suspension.is_active:
        return SuspensionCheck(is_suspended=False)

    if suspension.end_date is not None and suspension.end_date < now:
        _expire(db, user.id)
        logger.info(
            "Suspension expired",
            extra=build_log_context(user_id=str(user.id)),
        )
        return SuspensionCheck(is_suspended=False)

    return SuspensionCheck(
        is_suspended=True,
        suspension=suspension,
        message=_suspension_message(suspension, now),
        days_remaining=(
            _days_remaining(suspension.end_date, now) if suspension.end_date else None
        ),
    )


def ensure_not_suspended(
    db: Session,
    user_id: UUID | str,
    now: datetime | None = None,
) -> None:
    """Booking precondition. Raises AccountSuspendedError when suspended."""
    status = check_status(db, user_id, now=now)
    if status.is_suspended:
        raise AccountSuspendedError(status.message or "Account suspended")


# =============================================================================
# Transitions
# =============================================================================

def stage_violation_suspension(user: User, now: datetime | None = None) -> None:
    """Set the violation suspension on a loaded user without committing.

    Used by flag_service so the flag insert, counter increment and suspension
    land in one transaction.
    """
    days = settings.VIOLATION_SUSPENSION_DAYS
    _write_suspension(
        user,
        kind=SuspensionKind.VIOLATION_90_DAY,
        reason=f"Automatic {days}-day suspension: {user.flags_received} flags received",
        start=_now(now),
        days=days,
        triggered_by="automatic",
    )


def apply_violation_suspension(
    db: Session,
    user_id: UUID | str,
    now: datetime | None = None,
) -> User:
    """Apply the violation suspension, overwriting any prior state."""
    user = require_user(db, user_id)
    stage_violation_suspension(user, now=now)
    db.commit()
    db.refresh(user)
    announce_suspension(user)
    return user


def announce_suspension(user: User) -> None:
    """Post-commit side effects for a newly applied suspension."""
    logger.warning(
        "Suspension applied: kind=%s until %s",
        user.suspension_kind,
        user.suspension_end_date.isoformat() if user.suspension_end_date else None,
        extra=build_log_context(user_id=str(user.id)),
    )
    audit_service.log_event(
        "suspension_applied",
        target_id=user.id,
        details={
            "kind": user.suspension_kind,
            "end_date": user.suspension_end_date.isoformat() if user.suspension_end_date else None,
            "flags_received": user.flags_received,
        },
    )
    if user.suspension_end_date is not None:
        notification_service.notify_suspension_applied(
            user, user.suspension_reason or "", user.suspension_end_date
        )


def apply_suspension(
    db: Session,
    user_id: UUID | str,
    kind: SuspensionKind | str,
    reason: str,
    days: int | None = None,
    triggered_by: str = "admin",
    now: datetime | None = None,
) -> User:
    """
    Apply a fixed or manual suspension.

    Violation suspensions are derived from flags_received and can only be
    applied by apply_violation_suspension. An active violation suspension
    is not replaced by a weaker kind.
    """
    kind = SuspensionKind(kind)
    if kind == SuspensionKind.VIOLATION_90_DAY:
        raise SuspensionKindNotAllowedError(
            "Violation suspensions are applied automatically from received flags"
        )
    now = _now(now)
    user = require_user(db, user_id)
    current = user.suspension
    if (
        current.is_active
        and current.kind == SuspensionKind.VIOLATION_90_DAY.value
        and (current.end_date is None or current.end_date >= now)
    ):
        raise SuspensionKindNotAllowedError(
            "An active violation suspension must be lifted before applying another"
        )

    if days is None:
        days = settings.FIXED_SUSPENSION_DAYS
    if days <= 0:
        raise ValueError("Suspension length must be positive")

    _write_suspension(
        user,
        kind=kind,
        reason=reason,
        start=now,
        days=days,
        triggered_by=triggered_by,
    )
    db.commit()
    db.refresh(user)
    announce_suspension(user)
    return user


def lift(
    db: Session,
    user_id: UUID | str,
    lifted_by: UUID | str | None,
    reason: str | None = None,
    now: datetime | None = None,
) -> User:
    """Deactivate a suspension early. flags_received is left untouched."""
    user = require_user(db, user_id)
    lifted_by_id = normalize_optional_id(lifted_by)
    user.suspension_is_active = False
    user.suspension_lifted_at = _now(now)
    user.suspension_lifted_by_id = lifted_by_id
    user.suspension_lift_reason = reason or "Manual lift"
    db.commit()
    db.refresh(user)

    audit_service.log_event(
        "suspension_lifted",
        actor_id=lifted_by_id,
        target_id=user.id,
        details={"reason": user.suspension_lift_reason, "kind": user.suspension_kind},
    )
    return user


def list_suspended_users(db: Session, now: datetime | None = None) -> list[User]:
    """Users with an active, unexpired suspension."""
    now = _now(now)
    return list(
        db.execute(
            select(User)
            .where(
                User.suspension_is_active.is_(True),
                User.suspension_end_date > now,
            )
            .order_by(User.suspension_end_date)
        ).scalars().all()
    )


def count_suspended_users(db: Session, now: datetime | None = None) -> int:
    return len(list_suspended_users(db, now=now))
