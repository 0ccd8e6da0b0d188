"""add subscription_events ledger

Revision ID: 0002_subscription_events
Revises: 0001_billing_tables
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0002_subscription_events'
down_revision: Union[str, None] = '0001_billing_tables'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'subscription_events',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=False),
            primary_key=True,
            server_default=sa.text('gen_random_uuid()'),
        ),
        # Gateway event id, or event|subscription|period_end|paid_count
        sa.Column('dedupe_key', sa.String(255), nullable=False, unique=True),
        sa.Column('event', sa.String(100), nullable=False),
        sa.Column('razorpay_subscription_id', sa.Text),
        sa.Column('razorpay_payment_id', sa.Text),
        sa.Column('razorpay_order_id', sa.Text),
        sa.Column('period_start', sa.DateTime(timezone=True)),
        sa.Column('period_end', sa.DateTime(timezone=True)),
        sa.Column('paid_count', sa.Integer),
        sa.Column(
            'received_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
    )
    op.create_index(
        'ix_subscription_events_subscription',
        'subscription_events',
        ['razorpay_subscription_id'],
    )
    op.execute('ALTER TABLE subscription_events ENABLE ROW LEVEL SECURITY')
    op.execute("""
        CREATE POLICY "Service role manages subscription_events"
        ON subscription_events FOR ALL
        TO service_role
        USING (true)
        WITH CHECK (true)
    """)


def downgrade() -> None:
    op.drop_index('ix_subscription_events_subscription')
    op.drop_table('subscription_events')
