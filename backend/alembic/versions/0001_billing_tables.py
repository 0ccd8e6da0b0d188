"""Create billing tables

Revision ID: 0001_billing_tables
Revises:
Create Date: 2026-10-18

users entitlement snapshot, subscription_plans price list,
user_subscriptions (one row per gateway subscription) and payment_history
(legacy one-time orders).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_billing_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=False),
        primary_key=True,
        server_default=sa.text('gen_random_uuid()'),
    )


def upgrade() -> None:
    """Create users, plans, subscriptions and payment history."""

    op.create_table(
        'users',
        _uuid_pk(),
        sa.Column('email', sa.Text, unique=True),
        sa.Column('display_name', sa.Text),
        sa.Column('role', sa.String(20), server_default='user', nullable=False),

        # Entitlement
        sa.Column('subscription_status', sa.String(20), server_default='trial'),
        sa.Column('subscription_plan', sa.Text),
        sa.Column('payment_method', sa.Text),
        sa.Column('trial_start_date', sa.DateTime(timezone=True)),
        sa.Column('trial_end_date', sa.DateTime(timezone=True)),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True)),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True)),

        # Administrative lock
        sa.Column('is_locked', sa.Boolean, server_default='false', nullable=False),
        sa.Column('locked_reason', sa.Text),
        sa.Column('locked_by', sa.Text),
        sa.Column('locked_at', sa.DateTime(timezone=True)),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('admin', 'user')", name='ck_users_role'),
        sa.CheckConstraint(
            "subscription_status IN ('trial', 'active', 'expired', 'cancelled', 'completed')",
            name='ck_users_subscription_status',
        ),
    )
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])

    op.create_table(
        'subscription_plans',
        _uuid_pk(),
        sa.Column('name', sa.Text, nullable=False, unique=True),
        sa.Column('display_name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('price_inr', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('duration_days', sa.Integer, nullable=False),
        sa.Column('razorpay_plan_id', sa.Text),
        sa.Column('features', postgresql.JSONB, server_default=sa.text("'[]'::jsonb")),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_plans_active', 'subscription_plans', ['is_active'])

    op.create_table(
        'user_subscriptions',
        _uuid_pk(),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('razorpay_subscription_id', sa.Text, nullable=False, unique=True),
        sa.Column('razorpay_customer_id', sa.Text),
        sa.Column(
            'plan_id',
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey('subscription_plans.id'),
        ),
        sa.Column('plan_name', sa.Text, nullable=False),
        sa.Column('status', sa.String(20), server_default='created', nullable=False),
        sa.Column('payment_url', sa.Text),
        sa.Column('current_start', sa.DateTime(timezone=True)),
        sa.Column('current_end', sa.DateTime(timezone=True)),
        sa.Column('paid_count', sa.Integer, server_default='0'),
        sa.Column('total_count', sa.Integer),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('activated_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('created', 'active', 'cancelled', 'completed')",
            name='ck_user_subscriptions_status',
        ),
    )
    op.create_index('ix_user_subscriptions_user_created', 'user_subscriptions', ['user_id', 'created_at'])
    op.create_index('ix_user_subscriptions_status', 'user_subscriptions', ['status'])

    op.create_table(
        'payment_history',
        _uuid_pk(),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('razorpay_order_id', sa.Text, unique=True),
        sa.Column('razorpay_payment_id', sa.Text),
        sa.Column('receipt', sa.String(40)),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('payment_method', sa.Text),
        sa.Column('subscription_plan', sa.Text, nullable=False),
        sa.Column('subscription_days', sa.Integer, nullable=False),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True)),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True)),
        sa.Column('description', sa.Text),
        sa.Column('error_message', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name='ck_payment_history_status',
        ),
    )
    op.create_index('ix_payment_history_user_id', 'payment_history', ['user_id'])

    # Service role writes; users read their own rows
    for table, owner_column in (
        ('users', 'id'),
        ('user_subscriptions', 'user_id'),
        ('payment_history', 'user_id'),
    ):
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f"""
            CREATE POLICY "Users can view own {table}"
            ON {table} FOR SELECT
            TO authenticated
            USING ({owner_column} = auth.uid())
        """)
        op.execute(f"""
            CREATE POLICY "Service role manages {table}"
            ON {table} FOR ALL
            TO service_role
            USING (true)
            WITH CHECK (true)
        """)

    op.execute('ALTER TABLE subscription_plans ENABLE ROW LEVEL SECURITY')
    op.execute("""
        CREATE POLICY "Anyone can view active plans"
        ON subscription_plans FOR SELECT
        USING (is_active = true)
    """)


def downgrade() -> None:
    op.drop_table('payment_history')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
    op.drop_table('users')
