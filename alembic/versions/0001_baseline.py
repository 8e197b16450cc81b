"""Baseline migration - users, credit ledger, calls and flags

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table used by the credit ledger, availability resolver,
flag engine and suspension state machine.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('company', sa.String(255)),
        sa.Column('role', sa.String(30), nullable=False),
        sa.Column('package_type', sa.String(50)),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
        sa.Column('calendar_integration_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('referred_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('engagement_score', sa.Integer()),
        sa.Column('flags_received', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suspension_is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('suspension_start_date', nullable=True),
        _timestamp('suspension_end_date', nullable=True),
        sa.Column('suspension_reason', sa.Text()),
        sa.Column('suspension_kind', sa.String(30)),
        sa.Column('suspension_triggered_by', sa.String(50)),
        _timestamp('suspension_lifted_at', nullable=True),
        sa.Column('suspension_lifted_by_id', sa.Uuid()),
        sa.Column('suspension_lift_reason', sa.Text()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('flags_received >= 0', name='ck_users_flags_received_non_negative'),
    )
    op.create_index('idx_users_referred_by', 'users', ['referred_by_id', 'role'])
    op.create_index('idx_users_suspension', 'users', ['suspension_is_active', 'suspension_end_date'])

    op.create_table(
        'user_integrations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('integration_type', sa.String(30), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text()),
        _timestamp('token_expires_at', nullable=True),
        sa.Column('calendar_id', sa.String(255), nullable=False, server_default='primary'),
        sa.Column('account_email', sa.String(255)),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.UniqueConstraint('user_id', 'integration_type', name='uq_user_integration_type'),
    )

    # ==========================================================================
    # Plans and invitations
    # ==========================================================================
    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        sa.Column('max_call_credits', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
    )

    op.create_table(
        'invitations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sales_rep_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('decision_maker_email', sa.String(255), nullable=False),
        sa.Column('decision_maker_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        _timestamp('created_at'),
        _timestamp('responded_at', nullable=True),
    )
    op.create_index('idx_invitations_rep_status', 'invitations', ['sales_rep_id', 'status'])
    op.create_index('idx_invitations_dm_email', 'invitations', ['decision_maker_email'])

    # ==========================================================================
    # Credit ledger
    # ==========================================================================
    op.create_table(
        'monthly_call_limits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_role', sa.String(30), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('total_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_calls', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('last_updated'),
        sa.UniqueConstraint('user_id', 'month', name='uq_monthly_call_limit_user_month'),
        sa.CheckConstraint('remaining_calls >= 0', name='ck_monthly_call_limit_remaining'),
        sa.CheckConstraint('total_calls >= 0', name='ck_monthly_call_limit_total'),
    )

    op.create_table(
        'dm_rep_credit_usage',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('rep_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dm_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('rep_id', 'dm_id', 'month', name='uq_dm_rep_credit_usage'),
        sa.CheckConstraint(
            'credits_used >= 0 AND credits_used <= 3', name='ck_dm_rep_credit_usage_cap'
        ),
    )

    op.create_table(
        'call_credits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('rep_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dm_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('source', sa.String(30), nullable=False),
        sa.Column('credit_amount', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('earned_at'),
    )
    op.create_index('idx_call_credits_rep_dm_month', 'call_credits', ['rep_id', 'dm_id', 'month'])
    op.create_index(
        'uq_call_credits_onboarding',
        'call_credits',
        ['rep_id', 'dm_id', 'month'],
        unique=True,
        postgresql_where=sa.text("source = 'counterparty_onboarding'"),
        sqlite_where=sa.text("source = 'counterparty_onboarding'"),
    )

    # ==========================================================================
    # Calls (current + legacy)
    # ==========================================================================
    for table, prefix in (('scheduled_calls', 'scheduled_calls'), ('call_logs', 'call_logs')):
        constraints = []
        if table == 'scheduled_calls':
            constraints.append(
                sa.CheckConstraint('end_time > scheduled_at', name='ck_scheduled_calls_interval')
            )
        op.create_table(
            table,
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('organizer_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('counterparty_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            _timestamp('scheduled_at'),
            _timestamp('end_time'),
            sa.Column('status', sa.String(20), nullable=False, server_default='scheduled'),
            _timestamp('created_at'),
            *constraints,
        )
        op.create_index(f'idx_{prefix}_organizer', table, ['organizer_id', 'scheduled_at'])
        op.create_index(f'idx_{prefix}_counterparty', table, ['counterparty_id', 'scheduled_at'])

    # ==========================================================================
    # Flags
    # ==========================================================================
    op.create_table(
        'flags',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('target_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reporter_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('category', sa.String(40), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('subject_key', sa.String(255)),
        sa.Column('severity', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('resolution', sa.Text()),
        sa.Column('resolved_by_id', sa.Uuid()),
        _timestamp('resolved_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    )
    op.create_index('idx_flags_dedupe', 'flags', ['target_id', 'reporter_id', 'category', 'created_at'])
    op.create_index('idx_flags_status', 'flags', ['status'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('flags')
    op.drop_table('call_logs')
    op.drop_table('scheduled_calls')
    op.drop_table('call_credits')
    op.drop_table('dm_rep_credit_usage')
    op.drop_table('monthly_call_limits')
    op.drop_table('invitations')
    op.drop_table('subscription_plans')
    op.drop_table('user_integrations')
    op.drop_table('users')
