"""create verified_player and round_record

Revision ID: 1c2d3e4f5a6b
Revises:
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1c2d3e4f5a6b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'verified_player' not in existing_tables:
        op.create_table(
            'verified_player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('address', sa.String(length=42), nullable=False),
            sa.Column('fid', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=True),
            sa.Column('pfp_url', sa.Text(), nullable=True),
            sa.Column('follower_count', sa.Integer(), nullable=True),
            sa.Column('registered_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('verify_tx_hash', sa.String(length=66), nullable=True),
            sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_verified_player_address', 'verified_player', ['address'], unique=True)
        op.create_index('ix_verified_player_fid', 'verified_player', ['fid'])

    if 'round_record' not in existing_tables:
        op.create_table(
            'round_record',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('round_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('winners', sa.Text(), nullable=True),
            sa.Column('finalize_tx_hash', sa.String(length=66), nullable=True),
            sa.Column('distribute_tx_hash', sa.String(length=66), nullable=True),
            sa.Column('last_error', sa.Text(), nullable=True),
            sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('distributed_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_round_record_round_id', 'round_record', ['round_id'], unique=True)


def downgrade():
    op.drop_index('ix_round_record_round_id', table_name='round_record')
    op.drop_table('round_record')
    op.drop_index('ix_verified_player_fid', table_name='verified_player')
    op.drop_index('ix_verified_player_address', table_name='verified_player')
    op.drop_table('verified_player')
