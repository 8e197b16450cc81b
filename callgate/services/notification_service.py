"""Notification dispatch for flag, suspension and credit events.

Email delivery is an external collaborator. Domain services call the
``notify_*`` helpers, which hand a message to the configured sender and
swallow (but log) any failure so the primary transaction is never affected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from callgate.db.models import User

logger = logging.getLogger(__name__)


@dataclass
class OutboundMessage:
    """A message for the delivery collaborator."""
    to_email: str
    template: str
    subject: str
    context: dict = field(default_factory=dict)


class NotificationSender(Protocol):
    def send(self, message: OutboundMessage) -> None: ...


class LoggingNotificationSender:
    """Default sender: records the message on the log."""

    def send(self, message: OutboundMessage) -> None:
        logger.info(
            "Notification queued: template=%s subject=%s",
            message.template,
            message.subject,
        )


_sender: NotificationSender = LoggingNotificationSender()


def set_sender(sender: NotificationSender) -> None:
    """Install the delivery collaborator (called at startup or in tests)."""
    global _sender
    _sender = sender


def get_sender() -> NotificationSender:
    return _sender


def _dispatch(message: OutboundMessage) -> bool:
    """Fire-and-forget send. Returns False on failure instead of raising."""
    try:
        _sender.send(message)
        return True
    except Exception:
        logger.exception("Notification delivery failed for template %s", message.template)
        return False


# =============================================================================
# Event helpers
# =============================================================================

def notify_flag_raised(
    target: User,
    reporter: User | None,
    description: str,
    flag_count: int,
) -> bool:
    """Warn the flagged user."""
    return _dispatch(
        OutboundMessage(
            to_email=target.email,
            template="flag_warning",
            subject="A concern was reported on your account",
            context={
                "first_name": target.first_name,
                "reporter_name": reporter.display_name if reporter else None,
                "reporter_company": reporter.company if reporter else None,
                "description": description,
                "flag_count": flag_count,
            },
        )
    )


def notify_suspension_applied(
    user: User,
    reason: str,
    end_date: datetime,
) -> bool:
    return _dispatch(
        OutboundMessage(
            to_email=user.email,
            template="suspension_applied",
            subject="Your account has been suspended",
            context={
                "first_name": user.first_name,
                "reason": reason,
                "end_date": end_date.isoformat(),
            },
        )
    )


def notify_credit_awarded(rep: User, decision_maker: User, month: str) -> bool:
    return _dispatch(
        OutboundMessage(
            to_email=rep.email,
            template="credit_awarded",
            subject="You earned a call credit",
            context={
                "first_name": rep.first_name,
                "decision_maker_name": decision_maker.display_name,
                "month": month,
            },
        )
    )
