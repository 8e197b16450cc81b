"""Flag engine - behavioral violation reports and the per-user violation counter.

raise_flag is the only path that increments users.flags_received;
reset_violation_count is the only path that lowers it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.errors import NotFoundError, PolicyViolationError
from callgate.core.structured_logging import build_log_context
from callgate.db.enums import FlagCategory, FlagSeverity, FlagStatus, UserRole
from callgate.db.models import Flag, User
from callgate.services import audit_service, notification_service, suspension_service
from callgate.services.user_service import get_user_by_id, lock_user, require_user
from callgate.utils.identifiers import normalize_id, normalize_optional_id

logger = logging.getLogger(__name__)


class FlagNotFoundError(NotFoundError):
    """Flag not found."""

    pass


class InvalidFlagTransitionError(PolicyViolationError):
    """Requested status change is not allowed."""

    reason = "invalid_flag_transition"


# Allowed status moves. resolved/dismissed are reachable from anywhere.
_TRANSITIONS: dict[str, set[str]] = {
    FlagStatus.OPEN.value: {
        FlagStatus.INVESTIGATING.value,
        FlagStatus.RESOLVED.value,
        FlagStatus.DISMISSED.value,
    },
    FlagStatus.INVESTIGATING.value: {
        FlagStatus.RESOLVED.value,
        FlagStatus.DISMISSED.value,
    },
    FlagStatus.RESOLVED.value: {FlagStatus.DISMISSED.value},
    FlagStatus.DISMISSED.value: {FlagStatus.RESOLVED.value},
}


@dataclass
class FlagResult:
    """Outcome of raise_flag."""
    created: bool
    flag: Flag | None
    flags_received: int
    suspended: bool = False
    duplicate_of: UUID | None = None


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def normalize_subject(subject: str | None) -> str | None:
    """Canonical form of the underlying event reference (e.g. an email)."""
    if not subject:
        return None
    return subject.strip().lower()


def find_recent_duplicate(
    db: Session,
    target_id: UUID,
    reporter_id: UUID | None,
    category: str,
    subject_key: str | None,
    since: datetime,
    description: str = "",
) -> Flag | None:
    """
    Find a flag for the same (target, reporter, category, event) inside the window.

    With a subject, older rows without a subject_key are matched by the
    subject appearing in their description. Without one, the event is
    identified by the description itself.
    """
    query = select(Flag).where(
        Flag.target_id == target_id,
        Flag.category == category,
        Flag.created_at >= since,
    )
    if reporter_id is None:
        query = query.where(Flag.reporter_id.is_(None))
    else:
        query = query.where(Flag.reporter_id == reporter_id)

    if subject_key:
        query = query.where(
            or_(
                Flag.subject_key == subject_key,
                and_(
                    Flag.subject_key.is_(None),
                    func.lower(Flag.description).contains(subject_key, autoescape=True),
                ),
            )
        )
    else:
        query = query.where(
            Flag.subject_key.is_(None),
            func.lower(func.trim(Flag.description)) == description.strip().lower(),
        )

    return db.execute(query.order_by(Flag.created_at.desc())).scalars().first()


# =============================================================================
# Raise
# =============================================================================

def raise_flag(
    db: Session,
    target_id: UUID | str,
    reporter_id: UUID | str | None,
    category: FlagCategory | str,
    description: str,
    subject: str | None = None,
    severity: FlagSeverity | str = FlagSeverity.MEDIUM,
    now: datetime | None = None,
) -> FlagResult:
    """
    Record a violation against target_id.

    - Suppressed (no flag, no increment) when the same event was reported by the
      same reporter within the debounce window.
    - Otherwise inserts an open flag and increments flags_received atomically.
    - A sales rep reaching the violation threshold is suspended in the same
      transaction.
    - The warning notification is sent after commit and cannot fail the flag.
    """
    now = _now(now)
    target_uuid = normalize_id(target_id)
    reporter_uuid = normalize_optional_id(reporter_id)
    category = FlagCategory(category).value
    severity = FlagSeverity(severity).value
    subject_key = normalize_subject(subject)

    # Serializes find-or-insert per target
    target = lock_user(db, target_uuid)

    window_start = now - timedelta(hours=settings.FLAG_DEBOUNCE_HOURS)
    duplicate = find_recent_duplicate(
        db, target_uuid, reporter_uuid, category, subject_key, window_start, description
    )
    if duplicate:
        current_count = target.flags_received
        duplicate_id = duplicate.id
        db.rollback()
        logger.info(
            "Duplicate flag suppressed (original %s)",
            duplicate_id,
            extra=build_log_context(user_id=str(target_uuid)),
        )
        return FlagResult(
            created=False,
            flag=None,
            flags_received=current_count,
            duplicate_of=duplicate_id,
        )

    flag = Flag(
        target_id=target_uuid,
        reporter_id=reporter_uuid,
        category=category,
        description=description,
        subject_key=subject_key,
        severity=severity,
        status=FlagStatus.OPEN.value,
        created_at=now,
    )
    db.add(flag)

    db.execute(
        update(User)
        .where(User.id == target_uuid)
        .values(flags_received=User.flags_received + 1)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    db.refresh(target)
    new_count = target.flags_received

    suspended = False
    if new_count >= settings.VIOLATION_THRESHOLD and target.role == UserRole.SALES_REP.value:
        suspension_service.stage_violation_suspension(target, now=now)
        suspended = True

    db.commit()
    db.refresh(flag)

    logger.info(
        "Flag raised: category=%s count=%s",
        category,
        new_count,
        extra=build_log_context(user_id=str(target_uuid)),
    )
    audit_service.log_event(
        "flag_raised",
        actor_id=reporter_uuid,
        target_id=target_uuid,
        details={"flag_id": str(flag.id), "category": category, "flags_received": new_count},
    )
    if suspended:
        suspension_service.announce_suspension(target)

    reporter = get_user_by_id(db, reporter_uuid) if reporter_uuid else None
    notification_service.notify_flag_raised(target, reporter, description, new_count)

    return FlagResult(
        created=True,
        flag=flag,
        flags_received=new_count,
        suspended=suspended,
    )


# =============================================================================
# Moderation
# =============================================================================

def get_flag(db: Session, flag_id: UUID | str) -> Flag | None:
    return db.get(Flag, normalize_id(flag_id))


def update_flag_status(
    db: Session,
    flag_id: UUID | str,
    new_status: FlagStatus | str,
    resolution_note: str | None = None,
    updated_by: UUID | str | None = None,
    now: datetime | None = None,
) -> Flag:
    """
    Move a flag through open → investigating → resolved/dismissed.

    Resolving or dismissing never decrements flags_received.
    """
    flag = get_flag(db, flag_id)
    if not flag:
        raise FlagNotFoundError(f"Flag {flag_id} not found")

    new_status = FlagStatus(new_status).value
    if new_status == flag.status:
        return flag
    if new_status not in _TRANSITIONS.get(flag.status, set()):
        raise InvalidFlagTransitionError(
            f"Cannot move flag from {flag.status} to {new_status}"
        )

    old_status = flag.status
    flag.status = new_status
    if new_status in FlagStatus.terminal():
        flag.resolution = resolution_note
        flag.resolved_by_id = normalize_optional_id(updated_by)
        flag.resolved_at = _now(now)
    db.commit()
    db.refresh(flag)

    audit_service.log_event(
        "flag_status_changed",
        actor_id=normalize_optional_id(updated_by),
        target_id=flag.target_id,
        details={"flag_id": str(flag.id), "from": old_status, "to": new_status},
    )
    return flag


def list_flags(
    db: Session,
    status: FlagStatus | str | None = None,
    target_id: UUID | str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Flag]:
    """List flags newest first, optionally filtered."""
    query = select(Flag)
    if status:
        query = query.where(Flag.status == FlagStatus(status).value)
    if target_id:
        query = query.where(Flag.target_id == normalize_id(target_id))
    query = query.order_by(Flag.created_at.desc()).limit(limit).offset(offset)
    return list(db.execute(query).scalars().all())


def get_user_flags(db: Session, user_id: UUID | str) -> list[Flag]:
    return list_flags(db, target_id=user_id, limit=1000)


def get_flag_statistics(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Counts per status plus currently suspended users."""
    rows = db.execute(select(Flag.status, func.count(Flag.id)).group_by(Flag.status)).all()
    by_status = {status: count for status, count in rows}
    stats = {s.value: by_status.get(s.value, 0) for s in FlagStatus}
    stats["total"] = sum(by_status.values())
    stats["suspended_users"] = suspension_service.count_suspended_users(db, now=now)
    return stats


def reset_violation_count(
    db: Session,
    user_id: UUID | str,
    reset_by: UUID | str | None,
    reason: str | None = None,
) -> User:
    """Administrative reset of flags_received. Flags themselves are kept."""
    user = require_user(db, user_id)
    previous = user.flags_received
    user.flags_received = 0
    db.commit()
    db.refresh(user)

    audit_service.log_event(
        "violation_count_reset",
        actor_id=normalize_optional_id(reset_by),
        target_id=user.id,
        details={"previous": previous, "reason": reason},
    )
    return user
