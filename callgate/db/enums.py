"""Enum definitions for application constants."""

from enum import Enum


class UserRole(str, Enum):
    """Parties to a call."""
    SALES_REP = "sales_rep"
    DECISION_MAKER = "decision_maker"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class InvitationStatus(str, Enum):
    """
    Rep → DM invitation lifecycle.

    Flow: pending → accepted
                  ↘ declined
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CallStatus(str, Enum):
    """Scheduled call lifecycle."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def blocking(cls) -> list[str]:
        """Statuses that occupy a party's calendar."""
        return [cls.SCHEDULED.value, cls.COMPLETED.value]


class CreditSource(str, Enum):
    """Where a call credit came from."""
    COUNTERPARTY_ONBOARDING = "counterparty_onboarding"
    MANUAL = "manual"
    BONUS = "bonus"


class FlagCategory(str, Enum):
    """Behavioral violation categories."""
    INAPPROPRIATE_BEHAVIOR = "inappropriate_behavior"
    UNRESPONSIVE = "unresponsive"
    FAKE_PROFILE = "fake_profile"
    LOW_ENGAGEMENT = "low_engagement"
    SCHEDULING_ISSUES = "scheduling_issues"
    QUALITY_CONCERN = "quality_concern"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagStatus(str, Enum):
    """
    Flag moderation status.

    Flow: open → investigating → resolved
                               ↘ dismissed
    Any status may jump straight to resolved/dismissed.
    """
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @classmethod
    def terminal(cls) -> set[str]:
        return {cls.RESOLVED.value, cls.DISMISSED.value}


class SuspensionKind(str, Enum):
    """How a suspension came to be."""
    FIXED_30_DAY = "fixed_30_day"
    VIOLATION_90_DAY = "violation_90_day"  # Auto-derived from flags_received only
    MANUAL = "manual"


class IntegrationType(str, Enum):
    GOOGLE_CALENDAR = "google_calendar"


# Defaults
DEFAULT_FLAG_STATUS = FlagStatus.OPEN
DEFAULT_FLAG_SEVERITY = FlagSeverity.MEDIUM
