"""Calendar connection changes reported by the calendar webhook."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from callgate.core.structured_logging import build_log_context, log_data_anomaly
from callgate.db.enums import FlagCategory, FlagSeverity
from callgate.db.models import User
from callgate.services import credit_service, flag_service
from callgate.services.credit_service import CreditAwardResult
from callgate.services.flag_service import FlagResult
from callgate.services.user_service import get_user_by_id, require_user

logger = logging.getLogger(__name__)


@dataclass
class ConnectionChangeResult:
    user_id: UUID
    connected: bool
    changed: bool
    flag: FlagResult | None = None
    credit: CreditAwardResult | None = None


def disconnection_description(dm: User) -> str:
    """Flag text naming the DM; the email doubles as the dedupe subject."""
    return (
        f"Calendar disconnected by DM {dm.email} ({dm.display_name}) "
        f"from {dm.company or 'unknown company'}"
    )


def _referring_rep(db: Session, dm: User) -> User | None:
    if dm.referred_by_id is None:
        return None
    rep = get_user_by_id(db, dm.referred_by_id)
    if rep is None or not rep.is_sales_rep:
        log_data_anomaly(
            logger,
            "Decision maker references a missing or non-rep referrer %s",
            dm.referred_by_id,
            user_id=str(dm.id),
        )
        return None
    return rep


def handle_calendar_connection_change(
    db: Session,
    user_id: UUID | str,
    connected: bool,
    now: datetime | None = None,
) -> ConnectionChangeResult:
    """
    Persist a new calendar connection state and react to it.

    - DM goes from connected (with credentials) to disconnected: quality_concern
      flag against the referring rep, reported by the DM.
    - DM connects: try to award the referring rep an onboarding credit. A
      refused award is returned, not raised.
    """
    user = require_user(db, user_id)
    was_connected = user.has_connected_calendar
    changed = user.calendar_integration_enabled != connected
    if changed:
        user.calendar_integration_enabled = connected
        db.commit()
        db.refresh(user)

    result = ConnectionChangeResult(user_id=user.id, connected=connected, changed=changed)
    if not user.is_decision_maker:
        return result

    rep = _referring_rep(db, user)
    if rep is None:
        return result

    if was_connected and not connected:
        result.flag = flag_service.raise_flag(
            db,
            target_id=rep.id,
            reporter_id=user.id,
            category=FlagCategory.QUALITY_CONCERN,
            description=disconnection_description(user),
            subject=user.email,
            severity=FlagSeverity.MEDIUM,
            now=now,
        )
    elif connected and not was_connected and user.has_connected_calendar:
        result.credit = credit_service.award_counterparty_credit(db, rep.id, user.id, now=now)
        if not result.credit.success:
            logger.info(
                "Onboarding credit not awarded: %s",
                result.credit.reason,
                extra=build_log_context(user_id=str(rep.id), counterparty_id=str(user.id)),
            )
    return result
