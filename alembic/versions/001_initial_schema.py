"""Initial schema for SHOP

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Customers table (write store)
    op.create_table(
        'customers',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('gender', sa.String(16), nullable=False),  # MALE, FEMALE
        sa.Column('email', sa.String(100), nullable=False),  # lower-cased
        sa.Column('date_of_birth', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_customers_email')
    )

    # Outbox, committed in the same transaction as the aggregate
    op.create_table(
        'outbox_messages',
        sa.Column('id', sa.String(36), nullable=False),  # event_id
        sa.Column('transaction_tag', sa.String(36), nullable=False),
        sa.Column('aggregate_type', sa.String(100), nullable=False),
        sa.Column('aggregate_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),  # PENDING, COMPLETED, FAILED
        sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_outbox_messages_transaction_tag', 'outbox_messages', ['transaction_tag'])
    op.create_index('ix_outbox_messages_status_created', 'outbox_messages', ['status', 'created_at'])

    # Event log (append-only)
    op.create_table(
        'event_store',
        sa.Column('position', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('aggregate_type', sa.String(100), nullable=False),
        sa.Column('aggregate_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('transaction_tag', sa.String(36), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('stored_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('position'),
        sa.UniqueConstraint('event_id', name='uq_event_store_event_id')
    )
    op.create_index('ix_event_store_aggregate_id', 'event_store', ['aggregate_id'])
    op.create_index('ix_event_store_transaction_tag', 'event_store', ['transaction_tag'])
    op.create_index('ix_event_store_aggregate', 'event_store', ['aggregate_type', 'aggregate_id'])


def downgrade() -> None:
    op.drop_table('event_store')
    op.drop_table('outbox_messages')
    op.drop_table('customers')
