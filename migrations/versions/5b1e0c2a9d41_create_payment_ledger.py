"""create payment ledger and webhook deliveries

Revision ID: 5b1e0c2a9d41
Revises:
Create Date: 2024-01-08 10:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '5b1e0c2a9d41'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'payment',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_key', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_grace_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('next_schedule_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('next_schedule_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('transaction_key', 'status', name='uq_payment_transaction_key_status'),
        sa.CheckConstraint("status IN ('Paid', 'Cancel')", name='ck_payment_status'),
    )
    op.create_index('ix_payment_transaction_key', 'payment', ['transaction_key'])
    op.create_index('ix_payment_status', 'payment', ['status'])
    op.create_index('ix_payment_next_schedule_id', 'payment', ['next_schedule_id'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_webhook_deliveries_payment_id', 'webhook_deliveries', ['payment_id'])
    op.create_index('ix_webhook_deliveries_outcome', 'webhook_deliveries', ['outcome'])


def downgrade():
    op.drop_index('ix_webhook_deliveries_outcome', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_payment_id', table_name='webhook_deliveries')
    op.drop_table('webhook_deliveries')

    op.drop_index('ix_payment_next_schedule_id', table_name='payment')
    op.drop_index('ix_payment_status', table_name='payment')
    op.drop_index('ix_payment_transaction_key', table_name='payment')
    op.drop_table('payment')
