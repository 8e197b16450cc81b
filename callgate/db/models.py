"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from callgate.db.base import Base
from callgate.db.enums import (
    CallStatus,
    CreditSource,
    FlagSeverity,
    FlagStatus,
    IntegrationType,
    InvitationStatus,
    UserRole,
)
from callgate.db.types import EncryptedToken


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Users
# =============================================================================

@dataclass(frozen=True)
class Suspension:
    """Snapshot of the suspension embedded in a user row."""
    is_active: bool
    start_date: datetime | None
    end_date: datetime | None
    reason: str | None
    kind: str | None
    triggered_by: str | None = None
    lifted_at: datetime | None = None
    lifted_by_id: uuid.UUID | None = None
    lift_reason: str | None = None


class User(Base):
    """
    A sales rep or decision-maker.

    flags_received and the suspension_* columns form a small aggregate that
    only flag_service and suspension_service write to.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("flags_received >= 0", name="ck_users_flags_received_non_negative"),
        Index("idx_users_referred_by", "referred_by_id", "role"),
        Index("idx_users_suspension", "suspension_is_active", "suspension_end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(30), nullable=False)

    # Subscription plan tag (matches SubscriptionPlan.name, case-insensitive)
    package_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC", nullable=False)

    # Calendar connection flag; credentials live in user_integrations
    calendar_integration_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # DMs point at the rep who invited them
    referred_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    engagement_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Violation counter
    flags_received: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    # Embedded suspension
    suspension_is_active: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    suspension_start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    suspension_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    suspension_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    suspension_triggered_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    suspension_lifted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    suspension_lifted_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    suspension_lift_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    referred_by: Mapped["User"] = relationship(remote_side=[id])
    calendar_integration: Mapped["UserIntegration"] = relationship(
        primaryjoin=lambda: (User.id == UserIntegration.user_id)
        & (UserIntegration.integration_type == IntegrationType.GOOGLE_CALENDAR.value),
        viewonly=True,
        uselist=False,
    )

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    @property
    def is_sales_rep(self) -> bool:
        return self.role == UserRole.SALES_REP.value

    @property
    def is_decision_maker(self) -> bool:
        return self.role == UserRole.DECISION_MAKER.value

    @property
    def has_calendar_credentials(self) -> bool:
        integration = self.calendar_integration
        return bool(integration and integration.access_token_encrypted)

    @property
    def has_connected_calendar(self) -> bool:
        """Calendar integration is on and holding credentials."""
        return bool(self.calendar_integration_enabled and self.has_calendar_credentials)

    @property
    def suspension(self) -> Suspension:
        return Suspension(
            is_active=self.suspension_is_active,
            start_date=self.suspension_start_date,
            end_date=self.suspension_end_date,
            reason=self.suspension_reason,
            kind=self.suspension_kind,
            triggered_by=self.suspension_triggered_by,
            lifted_at=self.suspension_lifted_at,
            lifted_by_id=self.suspension_lifted_by_id,
            lift_reason=self.suspension_lift_reason,
        )


class UserIntegration(Base):
    """
    Per-user OAuth integrations.

    Presence of a google_calendar row with an access token is what
    "calendar credentials" means for the connection checks.
    """
    __tablename__ = "user_integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "integration_type", name="uq_user_integration_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    integration_type: Mapped[str] = mapped_column(
        String(30), default=IntegrationType.GOOGLE_CALENDAR.value, nullable=False
    )
    access_token_encrypted: Mapped[str] = mapped_column(EncryptedToken, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(EncryptedToken, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)
    account_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    user: Mapped["User"] = relationship()


# =============================================================================
# Plans and invitations
# =============================================================================

class SubscriptionPlan(Base):
    """Plan entitlement consumed by the credit ledger (read-only here)."""
    __tablename__ = "subscription_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    max_call_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class Invitation(Base):
    """
    Rep → DM invitation.

    decision_maker_id is filled once the DM signs up; until then only the
    email identifies the counterparty.
    """
    __tablename__ = "invitations"
    __table_args__ = (
        Index("idx_invitations_rep_status", "sales_rep_id", "status"),
        Index("idx_invitations_dm_email", "decision_maker_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sales_rep_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    decision_maker_email: Mapped[str] = mapped_column(String(255), nullable=False)
    decision_maker_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=InvitationStatus.PENDING.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)


# =============================================================================
# Credit ledger
# =============================================================================

class MonthlyCallLimit(Base):
    """
    Allowance cache per (user, month).

    max_calls is recomputed on every read; total_calls/remaining_calls are
    only changed by atomic updates.
    """
    __tablename__ = "monthly_call_limits"
    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_monthly_call_limit_user_month"),
        CheckConstraint("remaining_calls >= 0", name="ck_monthly_call_limit_remaining"),
        CheckConstraint("total_calls >= 0", name="ck_monthly_call_limit_total"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_role: Mapped[str] = mapped_column(String(30), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    total_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )


class DMRepCreditUsage(Base):
    """Credits a single rep/DM relationship contributed this month."""
    __tablename__ = "dm_rep_credit_usage"
    __table_args__ = (
        UniqueConstraint("rep_id", "dm_id", "month", name="uq_dm_rep_credit_usage"),
        CheckConstraint(
            "credits_used >= 0 AND credits_used <= 3", name="ck_dm_rep_credit_usage_cap"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rep_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    dm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class CallCredit(Base):
    """Append-only credit ledger entry."""
    __tablename__ = "call_credits"
    __table_args__ = (
        Index("idx_call_credits_rep_dm_month", "rep_id", "dm_id", "month"),
        # One onboarding credit per rep/DM/month
        Index(
            "uq_call_credits_onboarding",
            "rep_id",
            "dm_id",
            "month",
            unique=True,
            postgresql_where=text(f"source = '{CreditSource.COUNTERPARTY_ONBOARDING.value}'"),
            sqlite_where=text(f"source = '{CreditSource.COUNTERPARTY_ONBOARDING.value}'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rep_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    dm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    credit_amount: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    earned_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    decision_maker: Mapped["User"] = relationship(foreign_keys=[dm_id])


# =============================================================================
# Scheduled calls (current + legacy storage)
# =============================================================================

class CallRecordMixin:
    """Columns shared by the current and legacy call tables."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organizer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    counterparty_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=CallStatus.SCHEDULED.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class ScheduledCall(CallRecordMixin, Base):
    """Current call storage. All new bookings land here."""
    __tablename__ = "scheduled_calls"
    __table_args__ = (
        CheckConstraint("end_time > scheduled_at", name="ck_scheduled_calls_interval"),
        Index("idx_scheduled_calls_organizer", "organizer_id", "scheduled_at"),
        Index("idx_scheduled_calls_counterparty", "counterparty_id", "scheduled_at"),
    )


class LegacyCallLog(CallRecordMixin, Base):
    """Legacy call storage. May hold copies of rows also in scheduled_calls."""
    __tablename__ = "call_logs"
    __table_args__ = (
        Index("idx_call_logs_organizer", "organizer_id", "scheduled_at"),
        Index("idx_call_logs_counterparty", "counterparty_id", "scheduled_at"),
    )


# =============================================================================
# Flags
# =============================================================================

class Flag(Base):
    """
    Behavioral violation report.

    description is historical and never rewritten; only status/resolution move.
    subject_key identifies the underlying event (e.g. the counterparty email)
    for duplicate suppression.
    """
    __tablename__ = "flags"
    __table_args__ = (
        Index("idx_flags_dedupe", "target_id", "reporter_id", "category", "created_at"),
        Index("idx_flags_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reporter_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    subject_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    severity: Mapped[str] = mapped_column(
        String(20), default=FlagSeverity.MEDIUM.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=FlagStatus.OPEN.value, nullable=False
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    target: Mapped["User"] = relationship(foreign_keys=[target_id])
