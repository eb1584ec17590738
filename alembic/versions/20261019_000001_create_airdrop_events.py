"""create airdrop_events and stream_checkpoints tables

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create airdrop_events and stream_checkpoints tables."""
    op.create_table(
        'airdrop_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(66), nullable=False),
        sa.Column('block_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(42), nullable=False),
        sa.Column('amount', sa.String(78), nullable=False),
        sa.Column('token_address', sa.String(42), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('stream_id', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'log_index', name='uq_airdrop_events_tx_log'),
    )

    # Indexes
    op.create_index('ix_airdrop_events_tx_hash', 'airdrop_events', ['tx_hash'])
    op.create_index('ix_airdrop_events_block_number', 'airdrop_events', ['block_number'])
    op.create_index('ix_airdrop_events_event_type', 'airdrop_events', ['event_type'])
    op.create_index('ix_airdrop_events_recipient', 'airdrop_events', ['recipient'])
    op.create_index('ix_airdrop_events_token_address', 'airdrop_events', ['token_address'])
    op.create_index('ix_airdrop_events_contract_address', 'airdrop_events', ['contract_address'])

    op.create_table(
        'stream_checkpoints',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stream_id', sa.String(100), nullable=False),
        sa.Column('last_committed_block', sa.BigInteger(), nullable=False, default=0),
        sa.Column('total_events', sa.Integer(), nullable=False, default=0),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, default=0),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stream_checkpoints_stream_id', 'stream_checkpoints', ['stream_id'], unique=True)


def downgrade() -> None:
    """Drop airdrop_events and stream_checkpoints tables."""
    op.drop_index('ix_stream_checkpoints_stream_id', table_name='stream_checkpoints')
    op.drop_table('stream_checkpoints')

    op.drop_index('ix_airdrop_events_contract_address', table_name='airdrop_events')
    op.drop_index('ix_airdrop_events_token_address', table_name='airdrop_events')
    op.drop_index('ix_airdrop_events_recipient', table_name='airdrop_events')
    op.drop_index('ix_airdrop_events_event_type', table_name='airdrop_events')
    op.drop_index('ix_airdrop_events_block_number', table_name='airdrop_events')
    op.drop_index('ix_airdrop_events_tx_hash', table_name='airdrop_events')
    op.drop_table('airdrop_events')
