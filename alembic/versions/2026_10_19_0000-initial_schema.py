"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, subscriptions and usage_counters."""

    # ========================================================================
    # Create users table (identity provider user id as primary key)
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('stripe_customer_id', name='uq_users_stripe_customer_id'),
    )

    # ========================================================================
    # Create subscriptions table (web billing record, one per user)
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('plan_type', sa.String(20), nullable=False, server_default='free'),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("plan_type IN ('free', 'pro')", name='ck_subscriptions_plan_type'),
        sa.UniqueConstraint('user_id', name='uq_subscriptions_user_id'),
    )

    op.create_index(
        'idx_subscriptions_stripe_subscription_id',
        'subscriptions',
        ['stripe_subscription_id'],
        postgresql_where=sa.text('stripe_subscription_id IS NOT NULL'),
    )
    op.create_index('idx_subscriptions_status', 'subscriptions', ['status'])

    # ========================================================================
    # Create usage_counters table (one row per user/resource/bucket)
    # ========================================================================
    op.create_table(
        'usage_counters',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('resource', sa.String(32), nullable=False),
        sa.Column('bucket_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('count >= 0', name='ck_usage_counters_count_non_negative'),
        sa.CheckConstraint(
            "resource IN ('message', 'image', 'deep_research')",
            name='ck_usage_counters_resource',
        ),
        sa.UniqueConstraint('user_id', 'resource', 'bucket_start', name='uq_usage_counter_bucket'),
    )

    op.create_index('idx_usage_counters_bucket_start', 'usage_counters', ['bucket_start'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_usage_counters_bucket_start', table_name='usage_counters')
    op.drop_table('usage_counters')

    op.drop_index('idx_subscriptions_status', table_name='subscriptions')
    op.drop_index('idx_subscriptions_stripe_subscription_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_table('users')
