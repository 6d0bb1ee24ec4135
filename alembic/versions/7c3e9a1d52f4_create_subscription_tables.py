"""create_subscription_tables

Revision ID: 7c3e9a1d52f4
Revises: 
Create Date: 2026-10-18 10:12:31.482216

Users, plan catalog and subscription ledger. Creates only missing tables so
it is safe against a database bootstrapped with create_all().
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '7c3e9a1d52f4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ONE_ACTIVE_SUBSCRIPTION_WHERE = "status = 'active' AND type = 'subscription'"


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=False),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    if not table_exists('subscription_plans'):
        op.create_table('subscription_plans',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(length=20), nullable=False),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('display_name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('billing_cycle', sa.String(length=20), nullable=True),
            sa.Column('weekly_limit', sa.Integer(), nullable=True),
            sa.Column('monthly_limit', sa.Integer(), nullable=True),
            sa.Column('total_credits', sa.Integer(), nullable=True),
            sa.Column('duration_days', sa.Integer(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('sort_order', sa.Integer(), nullable=False),
            sa.Column('stripe_price_id', sa.String(), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint('price >= 0', name='ck_subscription_plans_price_non_negative'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('name')
        )
        op.create_index(op.f('ix_subscription_plans_id'), 'subscription_plans', ['id'], unique=False)
        op.create_index(op.f('ix_subscription_plans_type'), 'subscription_plans', ['type'], unique=False)
        op.create_index(op.f('ix_subscription_plans_is_active'), 'subscription_plans', ['is_active'], unique=False)

    if not table_exists('user_subscriptions'):
        op.create_table('user_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=True),
            sa.Column('type', sa.String(length=20), nullable=False),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('display_name', sa.String(length=255), nullable=True),
            sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('billing_cycle', sa.String(length=20), nullable=True),
            sa.Column('weekly_limit', sa.Integer(), nullable=True),
            sa.Column('monthly_limit', sa.Integer(), nullable=True),
            sa.Column('total_credits', sa.Integer(), nullable=True),
            sa.Column('duration_days', sa.Integer(), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('used_credits', sa.Integer(), nullable=False),
            sa.Column('weekly_used', sa.Integer(), nullable=False),
            sa.Column('monthly_used', sa.Integer(), nullable=False),
            sa.Column('total_used', sa.Integer(), nullable=False),
            sa.Column('last_used_at', sa.DateTime(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('started_at', sa.DateTime(), nullable=True),
            sa.Column('expired_at', sa.DateTime(), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(), nullable=True),
            sa.Column('payment_failed_at', sa.DateTime(), nullable=True),
            sa.Column('correlation_id', sa.String(length=255), nullable=True),
            sa.Column('checkout_session_id', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint(
                'total_credits IS NULL OR used_credits <= total_credits',
                name='ck_user_subscriptions_credits_within_total'
            ),
            sa.CheckConstraint(
                'used_credits >= 0 AND weekly_used >= 0 AND monthly_used >= 0',
                name='ck_user_subscriptions_counters_non_negative'
            ),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('correlation_id')
        )
        op.create_index(op.f('ix_user_subscriptions_id'), 'user_subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_user_id'), 'user_subscriptions', ['user_id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_plan_id'), 'user_subscriptions', ['plan_id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_status'), 'user_subscriptions', ['status'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_created_at'), 'user_subscriptions', ['created_at'], unique=False)
        op.create_index(
            op.f('ix_user_subscriptions_checkout_session_id'), 'user_subscriptions', ['checkout_session_id'], unique=False
        )
        op.create_index('idx_user_subscriptions_user_status', 'user_subscriptions', ['user_id', 'status'], unique=False)
        # At most one active subscription per user
        op.create_index(
            'uq_user_subscriptions_one_active_subscription',
            'user_subscriptions',
            ['user_id'],
            unique=True,
            postgresql_where=sa.text(ONE_ACTIVE_SUBSCRIPTION_WHERE),
            sqlite_where=sa.text(ONE_ACTIVE_SUBSCRIPTION_WHERE),
        )


def downgrade() -> None:
    op.drop_index('uq_user_subscriptions_one_active_subscription', table_name='user_subscriptions')
    op.drop_index('idx_user_subscriptions_user_status', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
    op.drop_table('users')
