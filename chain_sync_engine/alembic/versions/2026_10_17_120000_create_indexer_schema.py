"""create_indexer_schema

Revision ID: 2026_10_17_120000
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_10_17_120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS indexer')

    op.create_table(
        'watched_contracts',
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('event_signature', sa.Text(), nullable=False),
        sa.Column('last_indexed_block', sa.BigInteger(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('address'),
        schema='indexer',
    )
    op.create_index('ix_watched_contracts_is_active', 'watched_contracts', ['is_active'], unique=False, schema='indexer')

    op.create_table(
        'events',
        sa.Column('contract_address', sa.Text(), nullable=False),
        sa.Column('event_name', sa.Text(), nullable=False),
        sa.Column('args', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('transaction_hash', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('transaction_hash', 'log_index'),
        schema='indexer',
    )
    op.create_index('ix_events_contract_block', 'events', ['contract_address', 'block_number'], unique=False, schema='indexer')

    op.create_table(
        'transactions',
        sa.Column('hash', sa.Text(), nullable=False),
        sa.Column('from_address', sa.Text(), nullable=False),
        sa.Column('to_address', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('hash'),
        schema='indexer',
    )
    op.create_index('ix_transactions_from_block', 'transactions', ['from_address', 'block_number'], unique=False, schema='indexer')
    op.create_index('ix_transactions_to_block', 'transactions', ['to_address', 'block_number'], unique=False, schema='indexer')

    op.create_table(
        'address_sync_state',
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('synced_from_block', sa.BigInteger(), nullable=False),
        sa.Column('synced_to_block', sa.BigInteger(), nullable=False),
        sa.Column('creation_block', sa.BigInteger(), nullable=True),
        sa.Column('locator_checked', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('address'),
        schema='indexer',
    )


def downgrade() -> None:
    op.drop_table('address_sync_state', schema='indexer')
    op.drop_index('ix_transactions_to_block', table_name='transactions', schema='indexer')
    op.drop_index('ix_transactions_from_block', table_name='transactions', schema='indexer')
    op.drop_table('transactions', schema='indexer')
    op.drop_index('ix_events_contract_block', table_name='events', schema='indexer')
    op.drop_table('events', schema='indexer')
    op.drop_index('ix_watched_contracts_is_active', table_name='watched_contracts', schema='indexer')
    op.drop_table('watched_contracts', schema='indexer')
