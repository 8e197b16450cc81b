"""Credit ledger - monthly call allowances and counterparty credits.

Handles:
- Derived monthly allowance (max_calls recomputed on every read)
- Atomic call consumption against the (user, month) record
- Booking eligibility (suspension, disconnected counterparties, balance)
- Counterparty onboarding credits with per-pair monthly caps
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.constants import COUNTERPARTY_CREDIT_CAP, MONTH_FORMAT
from callgate.core.errors import PolicyViolationError
from callgate.core.structured_logging import build_log_context, log_data_anomaly
from callgate.db.enums import CreditSource, InvitationStatus, UserRole
from callgate.db.models import (
    CallCredit,
    DMRepCreditUsage,
    Invitation,
    MonthlyCallLimit,
    SubscriptionPlan,
    User,
)
from callgate.services import audit_service, notification_service, suspension_service
from callgate.services.user_service import (
    find_referred_decision_makers,
    get_user_by_email,
    get_user_by_id,
    require_user,
)
from callgate.utils.identifiers import normalize_id

logger = logging.getLogger(__name__)


class InsufficientAllowanceError(PolicyViolationError):
    """No calls left this month."""

    reason = "insufficient_allowance"


class CounterpartyCalendarDisconnectedError(PolicyViolationError):
    """A referred decision-maker has disconnected their calendar."""

    reason = "counterparty_calendar_disconnected"


class _CounterpartyCapReached(Exception):
    pass


@dataclass
class BookingEligibility:
    """Result of can_book."""
    can_book: bool
    remaining_calls: int
    reason: str | None = None
    message: str | None = None


@dataclass
class CreditAwardResult:
    """Result of award_counterparty_credit. reason is a stable code."""
    success: bool
    reason: str
    message: str
    credit: CallCredit | None = None


# =============================================================================
# Helpers
# =============================================================================

def month_key(now: datetime | None = None) -> str:
    """Calendar month key (YYYY-MM, UTC)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(MONTH_FORMAT)


def _resolve_role(user: User, role: UserRole | str | None) -> str:
    if role is None:
        return user.role
    return UserRole(role).value


def get_plan_for_user(db: Session, user: User) -> SubscriptionPlan | None:
    """Match the user's plan tag against plan names, case-insensitive."""
    if not user.package_type:
        return None
    return db.execute(
        select(SubscriptionPlan).where(
            func.lower(SubscriptionPlan.name) == user.package_type.strip().lower(),
            SubscriptionPlan.is_active.is_(True),
        )
    ).scalars().first()


def resolve_accepted_counterparties(db: Session, rep_id: UUID | str) -> list[User]:
    """
    Decision-makers behind this rep's accepted invitations.

    Duplicate invitations count once. Invitations without a decision_maker_id
    are resolved by email. A DM whose referred_by points at another rep is not
    attributed to this one.
    """
    rep_uuid = normalize_id(rep_id)
    invitations = db.execute(
        select(Invitation)
        .where(
            Invitation.sales_rep_id == rep_uuid,
            Invitation.status == InvitationStatus.ACCEPTED.value,
        )
        .order_by(Invitation.responded_at.desc(), Invitation.created_at.desc())
    ).scalars().all()

    seen: set[UUID] = set()
    counterparties: list[User] = []
    for invitation in invitations:
        if invitation.decision_maker_id is not None:
            dm = get_user_by_id(db, invitation.decision_maker_id)
        else:
            dm = get_user_by_email(db, invitation.decision_maker_email)
        if dm is None:
            log_data_anomaly(
                logger,
                "Accepted invitation %s has no matching decision maker",
                invitation.id,
                user_id=str(rep_uuid),
            )
            continue
        if dm.role != UserRole.DECISION_MAKER.value:
            log_data_anomaly(
                logger,
                "Accepted invitation %s points at non-DM user %s",
                invitation.id,
                dm.id,
                user_id=str(rep_uuid),
            )
            continue
        if dm.referred_by_id is not None and dm.referred_by_id != rep_uuid:
            log_data_anomaly(
                logger,
                "Accepted invitation %s conflicts with referred_by of DM %s",
                invitation.id,
                dm.id,
                user_id=str(rep_uuid),
                counterparty_id=str(dm.id),
            )
            continue
        if dm.id in seen:
            continue
        seen.add(dm.id)
        counterparties.append(dm)
    return counterparties


def compute_max_calls(db: Session, user: User, role: UserRole | str | None = None) -> int:
    """
    Current monthly allowance, derived from relationship state.

    - Decision-maker: plan call credits, or DEFAULT_DM_MONTHLY_CALLS.
    - Sales rep: one call per accepted counterparty with a connected calendar.
    """
    role = _resolve_role(user, role)
    if role == UserRole.DECISION_MAKER.value:
        plan = get_plan_for_user(db, user)
        if plan is None:
            return settings.DEFAULT_DM_MONTHLY_CALLS
        return plan.max_call_credits

    counterparties = resolve_accepted_counterparties(db, user.id)
    return sum(1 for dm in counterparties if dm.has_connected_calendar)


def _find_limit(db: Session, user_id: UUID, month: str) -> MonthlyCallLimit | None:
    return db.execute(
        select(MonthlyCallLimit).where(
            MonthlyCallLimit.user_id == user_id,
            MonthlyCallLimit.month == month,
        )
    ).scalar_one_or_none()


def find_or_create_monthly_limit(
    db: Session,
    user_id: UUID,
    role: str,
    month: str,
    max_calls: int,
) -> MonthlyCallLimit:
    """Get the (user, month) record, creating it with total_calls=0."""
    record = _find_limit(db, user_id, month)
    if record:
        return record
    try:
        with db.begin_nested():
            record = MonthlyCallLimit(
                user_id=user_id,
                user_role=role,
                month=month,
                total_calls=0,
                max_calls=max_calls,
                remaining_calls=max(0, max_calls),
            )
            db.add(record)
    except IntegrityError:
        # Created concurrently
        record = _find_limit(db, user_id, month)
    return record


# =============================================================================
# Monthly limits
# =============================================================================

def get_monthly_limit(
    db: Session,
    user_id: UUID | str,
    role: UserRole | str | None = None,
    month: str | None = None,
    commit: bool = True,
) -> MonthlyCallLimit:
    """
    Return the (user, month) allowance record with max_calls freshly derived.

    Consumed calls are never retroactively penalized: when max_calls drops
    below total_calls, remaining_calls floors at zero.
    """
    user = require_user(db, user_id)
    role = _resolve_role(user, role)
    month = month or month_key()
    max_calls = compute_max_calls(db, user, role)

    record = find_or_create_monthly_limit(db, user.id, role, month, max_calls)
    if record.max_calls != max_calls:
        db.execute(
            update(MonthlyCallLimit)
            .where(MonthlyCallLimit.id == record.id)
            .values(
                max_calls=max_calls,
                remaining_calls=case(
                    (MonthlyCallLimit.total_calls >= max_calls, 0),
                    else_=max_calls - MonthlyCallLimit.total_calls,
                ),
                last_updated=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Allowance recomputed: max_calls %s -> %s",
            record.max_calls,
            max_calls,
            extra=build_log_context(user_id=str(user.id), month=month),
        )
    if commit:
        db.commit()
    else:
        db.flush()
    db.refresh(record)
    return record


def consume_call(
    db: Session,
    user_id: UUID | str,
    month: str | None = None,
    amount: int = 1,
    commit: bool = True,
) -> MonthlyCallLimit:
    """
    Atomically charge `amount` calls against the month's allowance.

    A single conditional UPDATE; if no row qualifies the allowance is
    exhausted and InsufficientAllowanceError is raised.
    """
    if amount < 1:
        raise ValueError("amount must be positive")
    month = month or month_key()
    record = get_monthly_limit(db, user_id, month=month, commit=False)

    result = db.execute(
        update(MonthlyCallLimit)
        .where(
            MonthlyCallLimit.id == record.id,
            MonthlyCallLimit.remaining_calls >= amount,
        )
        .values(
            total_calls=MonthlyCallLimit.total_calls + amount,
            remaining_calls=MonthlyCallLimit.remaining_calls - amount,
            last_updated=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        max_calls = record.max_calls
        total_calls = record.total_calls
        if commit:
            db.rollback()
        raise InsufficientAllowanceError(
            f"Monthly call limit reached ({total_calls}/{max_calls} calls used)"
        )

    if commit:
        db.commit()
    db.refresh(record)
    return record


def can_book(
    db: Session,
    user_id: UUID | str,
    role: UserRole | str | None = None,
    now: datetime | None = None,
) -> BookingEligibility:
    """
    Decide whether a user may book a call now.

    Order: suspension, then (sales reps) disconnected referred counterparties,
    then remaining balance. A single disconnected counterparty blocks a rep
    outright regardless of balance.
    """
    user = require_user(db, user_id)
    role = _resolve_role(user, role)

    suspension = suspension_service.check_status(db, user.id, now=now)
    limit = get_monthly_limit(db, user.id, role, month_key(now))

    if suspension.is_suspended:
        return BookingEligibility(
            can_book=False,
            remaining_calls=limit.remaining_calls,
            reason=suspension_service.AccountSuspendedError.reason,
            message=suspension.message,
        )

    if role == UserRole.SALES_REP.value:
        disconnected = [
            dm for dm in find_referred_decision_makers(db, user.id)
            if not dm.has_connected_calendar
        ]
        if disconnected:
            names = ", ".join(f"{dm.display_name} ({dm.email})" for dm in disconnected)
            if len(disconnected) == 1:
                message = (
                    f"Cannot book calls: Your referred Decision Maker {names} "
                    "must reconnect their calendar to enable call booking."
                )
            else:
                message = (
                    f"Cannot book calls: Your referred Decision Makers ({names}) "
                    "must reconnect their calendars to enable call booking."
                )
            return BookingEligibility(
                can_book=False,
                remaining_calls=limit.remaining_calls,
                reason=CounterpartyCalendarDisconnectedError.reason,
                message=message,
            )

    if limit.remaining_calls <= 0:
        if role == UserRole.SALES_REP.value and limit.max_calls == 0:
            message = (
                "No call credits available: invite a Decision Maker who connects "
                "their calendar to earn credits."
            )
        else:
            message = (
                f"Monthly call limit reached ({limit.total_calls}/{limit.max_calls} calls used)"
            )
        return BookingEligibility(
            can_book=False,
            remaining_calls=0,
            reason=InsufficientAllowanceError.reason,
            message=message,
        )

    return BookingEligibility(can_book=True, remaining_calls=limit.remaining_calls)


def ensure_can_book(
    db: Session,
    user_id: UUID | str,
    now: datetime | None = None,
) -> BookingEligibility:
    """can_book that raises the matching PolicyViolationError when denied."""
    eligibility = can_book(db, user_id, now=now)
    if eligibility.can_book:
        return eligibility
    error_cls = {
        suspension_service.AccountSuspendedError.reason: suspension_service.AccountSuspendedError,
        CounterpartyCalendarDisconnectedError.reason: CounterpartyCalendarDisconnectedError,
    }.get(eligibility.reason, InsufficientAllowanceError)
    raise error_cls(eligibility.message or "Booking not allowed")


# =============================================================================
# Counterparty credits
# =============================================================================

def get_credit_usage(db: Session, rep_id: UUID | str, dm_id: UUID | str, month: str) -> int:
    usage = db.execute(
        select(DMRepCreditUsage).where(
            DMRepCreditUsage.rep_id == normalize_id(rep_id),
            DMRepCreditUsage.dm_id == normalize_id(dm_id),
            DMRepCreditUsage.month == month,
        )
    ).scalar_one_or_none()
    return usage.credits_used if usage else 0


def _increment_credit_usage(db: Session, rep_id: UUID, dm_id: UUID, month: str) -> None:
    """Upsert the pair's usage row and bump it, refusing past the cap."""
    exists = db.execute(
        select(DMRepCreditUsage.id).where(
            DMRepCreditUsage.rep_id == rep_id,
            DMRepCreditUsage.dm_id == dm_id,
            DMRepCreditUsage.month == month,
        )
    ).scalar_one_or_none()
    if exists is None:
        try:
            with db.begin_nested():
                db.add(DMRepCreditUsage(rep_id=rep_id, dm_id=dm_id, month=month, credits_used=0))
        except IntegrityError:
            pass

    result = db.execute(
        update(DMRepCreditUsage)
        .where(
            DMRepCreditUsage.rep_id == rep_id,
            DMRepCreditUsage.dm_id == dm_id,
            DMRepCreditUsage.month == month,
            DMRepCreditUsage.credits_used < COUNTERPARTY_CREDIT_CAP,
        )
        .values(credits_used=DMRepCreditUsage.credits_used + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _CounterpartyCapReached()


def _onboarding_credit_exists(db: Session, rep_id: UUID, dm_id: UUID, month: str) -> bool:
    return db.execute(
        select(CallCredit.id).where(
            CallCredit.rep_id == rep_id,
            CallCredit.dm_id == dm_id,
            CallCredit.month == month,
            CallCredit.source == CreditSource.COUNTERPARTY_ONBOARDING.value,
        )
    ).first() is not None


def award_counterparty_credit(
    db: Session,
    rep_id: UUID | str,
    dm_id: UUID | str,
    now: datetime | None = None,
) -> CreditAwardResult:
    """
    Award one onboarding credit per (rep, DM, month).

    Gates: DM engagement score at or above the threshold, pair usage below
    the monthly cap, no onboarding credit already recorded this month.
    """
    now = now or datetime.now(timezone.utc)
    rep = get_user_by_id(db, rep_id)
    if not rep or rep.role != UserRole.SALES_REP.value:
        return CreditAwardResult(False, "rep_not_found", "Sales rep not found")
    dm = get_user_by_id(db, dm_id)
    if not dm or dm.role != UserRole.DECISION_MAKER.value:
        return CreditAwardResult(False, "counterparty_not_found", "Decision Maker not found")
    if dm.referred_by_id is not None and dm.referred_by_id != rep.id:
        return CreditAwardResult(
            False,
            "counterparty_not_referred",
            "Decision Maker was referred by a different sales rep",
        )

    score = dm.engagement_score
    if score is None:
        score = settings.DEFAULT_ENGAGEMENT_SCORE
    if score < settings.ENGAGEMENT_SCORE_THRESHOLD:
        return CreditAwardResult(
            False,
            "engagement_below_threshold",
            f"Decision Maker's engagement score ({score}%) is below the "
            f"{settings.ENGAGEMENT_SCORE_THRESHOLD}% threshold required for credit eligibility",
        )

    month = month_key(now)
    if get_credit_usage(db, rep.id, dm.id, month) >= COUNTERPARTY_CREDIT_CAP:
        return CreditAwardResult(
            False,
            "counterparty_cap_reached",
            f"Maximum credits ({COUNTERPARTY_CREDIT_CAP}) already earned from this "
            "Decision Maker this month",
        )
    if _onboarding_credit_exists(db, rep.id, dm.id, month):
        return CreditAwardResult(
            False,
            "already_awarded",
            "Credit already awarded for this Decision Maker's onboarding",
        )

    try:
        with db.begin_nested():
            credit = CallCredit(
                rep_id=rep.id,
                dm_id=dm.id,
                month=month,
                source=CreditSource.COUNTERPARTY_ONBOARDING.value,
                credit_amount=1,
                earned_at=now,
            )
            db.add(credit)
            db.flush()
            _increment_credit_usage(db, rep.id, dm.id, month)
    except IntegrityError:
        db.rollback()
        return CreditAwardResult(
            False,
            "already_awarded",
            "Credit already awarded for this Decision Maker's onboarding",
        )
    except _CounterpartyCapReached:
        db.rollback()
        return CreditAwardResult(
            False,
            "counterparty_cap_reached",
            f"Maximum credits ({COUNTERPARTY_CREDIT_CAP}) already earned from this "
            "Decision Maker this month",
        )

    db.commit()
    db.refresh(credit)

    logger.info(
        "Onboarding credit awarded",
        extra=build_log_context(user_id=str(rep.id), counterparty_id=str(dm.id), month=month),
    )
    audit_service.log_event(
        "credit_awarded",
        target_id=rep.id,
        details={"dm_id": str(dm.id), "month": month, "credit_id": str(credit.id)},
    )
    notification_service.notify_credit_awarded(rep, dm, month)

    return CreditAwardResult(
        True,
        "awarded",
        "Credit awarded for Decision Maker onboarding completion with calendar integration",
        credit=credit,
    )


def get_rep_credits(db: Session, rep_id: UUID | str) -> list[CallCredit]:
    """Active credit entries, newest first."""
    return list(
        db.execute(
            select(CallCredit)
            .where(CallCredit.rep_id == normalize_id(rep_id), CallCredit.is_active.is_(True))
            .order_by(CallCredit.earned_at.desc())
        ).scalars().all()
    )


def get_rep_total_credits(db: Session, rep_id: UUID | str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(CallCredit.credit_amount), 0)).where(
            CallCredit.rep_id == normalize_id(rep_id),
            CallCredit.is_active.is_(True),
        )
    ).scalar_one()
    return int(total)
