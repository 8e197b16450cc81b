"""
Tests for the credit ledger.

Coverage:
- Derived max_calls for decision makers (plan / fallback) and sales reps
- Atomic consumption and the remaining = max - total invariant
- Booking eligibility ordering
- Counterparty onboarding credits (threshold, once per month, pair cap)
"""

from datetime import datetime, timedelta, timezone

import pytest

from callgate.core.constants import COUNTERPARTY_CREDIT_CAP
from callgate.db.enums import CreditSource, InvitationStatus, SuspensionKind, UserRole
from callgate.db.models import CallCredit, DMRepCreditUsage, MonthlyCallLimit
from callgate.services import credit_service, suspension_service
from callgate.services.credit_service import InsufficientAllowanceError


# =============================================================================
# Decision-maker allowance
# =============================================================================

class TestDecisionMakerAllowance:
    """Plan-driven allowance for decision makers."""

    def test_plan_entitlement_is_used(self, db, make_user, make_plan):
        make_plan("Premium", 10)
        dm = make_user(UserRole.DECISION_MAKER, package_type="premium")

        limit = credit_service.get_monthly_limit(db, dm.id)

        assert limit.max_calls == 10
        assert limit.remaining_calls == 10
        assert limit.total_calls == 0

    def test_unknown_plan_falls_back_to_default(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER, package_type="enterprise-legacy")

        limit = credit_service.get_monthly_limit(db, dm.id)

        assert limit.max_calls == 3

    def test_inactive_plan_falls_back_to_default(self, db, make_user, make_plan):
        make_plan("Basic", 8, is_active=False)
        dm = make_user(UserRole.DECISION_MAKER, package_type="basic")

        assert credit_service.get_monthly_limit(db, dm.id).max_calls == 3

    def test_one_record_per_user_month(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)

        credit_service.get_monthly_limit(db, dm.id, month="2025-09")
        credit_service.get_monthly_limit(db, dm.id, month="2025-09")
        credit_service.get_monthly_limit(db, dm.id, month="2025-10")

        rows = db.query(MonthlyCallLimit).filter(MonthlyCallLimit.user_id == dm.id).all()
        assert sorted(r.month for r in rows) == ["2025-09", "2025-10"]


# =============================================================================
# Sales-rep allowance
# =============================================================================

class TestSalesRepAllowance:
    """maxCalls equals the number of accepted, calendar-connected counterparties."""

    def test_counts_connected_counterparties(self, db, make_user, make_invitation):
        rep = make_user(UserRole.SALES_REP)
        for _ in range(3):
            dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
            make_invitation(rep, dm)

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 3

    def test_disconnected_and_pending_counterparties_do_not_count(
        self, db, make_user, make_invitation
    ):
        rep = make_user(UserRole.SALES_REP)
        connected = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
        disconnected = make_user(UserRole.DECISION_MAKER, referred_by=rep)
        pending = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
        make_invitation(rep, connected)
        make_invitation(rep, disconnected)
        make_invitation(rep, pending, status=InvitationStatus.PENDING)

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 1

    def test_duplicate_invitations_count_once(self, db, make_user, make_invitation):
        rep = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
        make_invitation(rep, dm)
        make_invitation(rep, dm)
        make_invitation(rep, dm, link_dm=False)

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 1

    def test_invitation_without_dm_id_resolves_by_email(self, db, make_user, make_invitation):
        rep = make_user(UserRole.SALES_REP)
        dm = make_user(
            UserRole.DECISION_MAKER,
            email="casey@client.com",
            referred_by=rep,
            calendar_connected=True,
        )
        make_invitation(rep, email="Casey@Client.com")

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 1
        assert dm.id in {u.id for u in credit_service.resolve_accepted_counterparties(db, rep.id)}

    def test_counterparty_referred_by_other_rep_is_skipped(
        self, db, make_user, make_invitation, caplog
    ):
        rep = make_user(UserRole.SALES_REP)
        other_rep = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=other_rep, calendar_connected=True)
        make_invitation(rep, dm)

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 0
        anomalies = [r for r in caplog.records if getattr(r, "anomaly", None)]
        assert len(anomalies) == 1
        assert anomalies[0].anomaly == "DataIntegrityAnomaly"
        assert anomalies[0].counterparty_id == str(dm.id)

    def test_invitation_for_unknown_email_is_skipped(
        self, db, make_user, make_invitation, caplog
    ):
        rep = make_user(UserRole.SALES_REP)
        make_invitation(rep, email="ghost@nowhere.com")

        assert credit_service.resolve_accepted_counterparties(db, rep.id) == []
        assert any(getattr(r, "anomaly", None) == "DataIntegrityAnomaly" for r in caplog.records)

    def test_manual_credits_do_not_change_max_calls(self, db, make_user, make_invitation):
        rep = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
        make_invitation(rep, dm)
        db.add(
            CallCredit(
                rep_id=rep.id,
                dm_id=dm.id,
                month=credit_service.month_key(),
                source=CreditSource.MANUAL.value,
            )
        )
        db.commit()

        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 1

    def test_allowance_follows_calendar_state(self, db, rep_with_connected_dm):
        """Disconnect drops maxCalls to 0; reconnect restores it."""
        rep, dm = rep_with_connected_dm
        assert credit_service.get_monthly_limit(db, rep.id).max_calls == 1

        dm.calendar_integration_enabled = False
        db.commit()
        limit = credit_service.get_monthly_limit(db, rep.id)
        assert limit.max_calls == 0
        assert limit.remaining_calls == 0

        dm.calendar_integration_enabled = True
        db.commit()
        limit = credit_service.get_monthly_limit(db, rep.id)
        assert limit.max_calls == 1
        assert limit.remaining_calls == 1


# =============================================================================
# Consumption
# =============================================================================

class TestConsumeCall:
    """Atomic charge against the (user, month) record."""

    def test_consume_then_read_keeps_invariant(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)

        credit_service.consume_call(db, dm.id)
        limit = credit_service.get_monthly_limit(db, dm.id)

        assert limit.total_calls == 1
        assert limit.remaining_calls == limit.max_calls - limit.total_calls == 2

    def test_exhausted_allowance_raises(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)
        for _ in range(3):
            credit_service.consume_call(db, dm.id)

        with pytest.raises(InsufficientAllowanceError) as exc:
            credit_service.consume_call(db, dm.id)

        assert exc.value.reason == "insufficient_allowance"
        limit = credit_service.get_monthly_limit(db, dm.id)
        assert limit.total_calls == 3
        assert limit.remaining_calls == 0

    def test_amount_larger_than_balance_is_rejected(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)

        with pytest.raises(InsufficientAllowanceError):
            credit_service.consume_call(db, dm.id, amount=4)

        assert credit_service.get_monthly_limit(db, dm.id).remaining_calls == 3

    def test_non_positive_amount_is_invalid(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)
        with pytest.raises(ValueError):
            credit_service.consume_call(db, dm.id, amount=0)

    def test_shrinking_allowance_never_goes_negative(self, db, rep_with_connected_dm):
        rep, dm = rep_with_connected_dm
        credit_service.consume_call(db, rep.id)

        dm.calendar_integration_enabled = False
        db.commit()
        limit = credit_service.get_monthly_limit(db, rep.id)

        assert limit.max_calls == 0
        assert limit.total_calls == 1
        assert limit.remaining_calls == 0


# =============================================================================
# Eligibility
# =============================================================================

class TestCanBook:
    """Suspension, then disconnected counterparties, then balance."""

    def test_connected_rep_can_book(self, db, rep_with_connected_dm):
        rep, _ = rep_with_connected_dm

        result = credit_service.can_book(db, rep.id)

        assert result.can_book is True
        assert result.remaining_calls == 1

    def test_suspension_blocks_first(self, db, rep_with_connected_dm):
        rep, _ = rep_with_connected_dm
        suspension_service.apply_suspension(
            db, rep.id, SuspensionKind.MANUAL, reason="policy review"
        )

        result = credit_service.can_book(db, rep.id)

        assert result.can_book is False
        assert result.reason == "account_suspended"
        assert "policy review" in result.message

    def test_disconnected_referred_dm_blocks_rep(self, db, make_user, make_invitation):
        rep = make_user(UserRole.SALES_REP)
        for _ in range(2):
            dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, calendar_connected=True)
            make_invitation(rep, dm)
        lapsed = make_user(
            UserRole.DECISION_MAKER,
            email="lapsed@client.com",
            first_name="Lee",
            last_name="Lapsed",
            referred_by=rep,
        )
        make_invitation(rep, lapsed)

        result = credit_service.can_book(db, rep.id)

        assert result.can_book is False
        assert result.reason == "counterparty_calendar_disconnected"
        assert "Lee Lapsed" in result.message
        # Still has balance from the two connected DMs
        assert result.remaining_calls == 2

    def test_no_balance_blocks(self, db, make_user):
        dm = make_user(UserRole.DECISION_MAKER)
        for _ in range(3):
            credit_service.consume_call(db, dm.id)

        result = credit_service.can_book(db, dm.id)

        assert result.can_book is False
        assert result.reason == "insufficient_allowance"
        assert "3/3" in result.message

    def test_rep_without_counterparties_gets_guidance(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)

        result = credit_service.can_book(db, rep.id)

        assert result.can_book is False
        assert result.reason == "insufficient_allowance"
        assert "invite a Decision Maker" in result.message


# =============================================================================
# Counterparty credits
# =============================================================================

class TestAwardCounterpartyCredit:
    """One onboarding credit per (rep, dm, month), gated by engagement."""

    def test_award_creates_credit_and_usage(self, db, rep_with_connected_dm, sent_notifications):
        rep, dm = rep_with_connected_dm

        result = credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert result.success is True
        assert result.credit.source == CreditSource.COUNTERPARTY_ONBOARDING.value
        month = credit_service.month_key()
        assert credit_service.get_credit_usage(db, rep.id, dm.id, month) == 1
        assert "credit_awarded" in sent_notifications.templates()

    def test_second_award_same_month_is_refused(self, db, rep_with_connected_dm):
        rep, dm = rep_with_connected_dm
        credit_service.award_counterparty_credit(db, rep.id, dm.id)

        result = credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert result.success is False
        assert result.reason == "already_awarded"
        assert db.query(CallCredit).filter(CallCredit.rep_id == rep.id).count() == 1

    def test_next_month_can_award_again(self, db, rep_with_connected_dm):
        rep, dm = rep_with_connected_dm
        september = datetime(2025, 9, 15, tzinfo=timezone.utc)

        first = credit_service.award_counterparty_credit(db, rep.id, dm.id, now=september)
        second = credit_service.award_counterparty_credit(
            db, rep.id, dm.id, now=september + timedelta(days=30)
        )

        assert first.success and second.success
        assert {first.credit.month, second.credit.month} == {"2025-09", "2025-10"}

    def test_low_engagement_is_refused(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, engagement_score=39)

        result = credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert result.success is False
        assert result.reason == "engagement_below_threshold"

    def test_missing_score_uses_default(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, engagement_score=None)

        assert credit_service.award_counterparty_credit(db, rep.id, dm.id).success is True

    def test_pair_cap_is_enforced(self, db, rep_with_connected_dm):
        rep, dm = rep_with_connected_dm
        month = credit_service.month_key()
        db.add(
            DMRepCreditUsage(
                rep_id=rep.id, dm_id=dm.id, month=month, credits_used=COUNTERPARTY_CREDIT_CAP
            )
        )
        db.commit()

        result = credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert result.success is False
        assert result.reason == "counterparty_cap_reached"
        assert credit_service.get_credit_usage(db, rep.id, dm.id, month) == COUNTERPARTY_CREDIT_CAP

    def test_dm_referred_by_other_rep_is_refused(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)
        other = make_user(UserRole.SALES_REP)
        dm = make_user(UserRole.DECISION_MAKER, referred_by=other, engagement_score=90)

        result = credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert result.success is False
        assert result.reason == "counterparty_not_referred"

    def test_unknown_parties_are_refused(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)
        not_a_dm = make_user(UserRole.SALES_REP)

        result = credit_service.award_counterparty_credit(db, rep.id, not_a_dm.id)

        assert result.success is False
        assert result.reason == "counterparty_not_found"

    def test_rep_credit_queries(self, db, make_user):
        rep = make_user(UserRole.SALES_REP)
        for _ in range(2):
            dm = make_user(UserRole.DECISION_MAKER, referred_by=rep, engagement_score=80)
            credit_service.award_counterparty_credit(db, rep.id, dm.id)

        assert len(credit_service.get_rep_credits(db, rep.id)) == 2
        assert credit_service.get_rep_total_credits(db, rep.id) == 2
