"""create_otp_tokens_table

Revision ID: 4f2c9a1d7e30
Revises:
Create Date: 2026-10-19 09:12:44.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2c9a1d7e30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'otp_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=256), nullable=False),
        sa.Column('identity', sa.String(length=256), nullable=False),
        sa.Column('secret', sa.String(length=128), nullable=False),
        sa.Column('ttl_seconds', sa.Integer(), nullable=False),
        sa.Column('validated', sa.String(length=1), nullable=False, server_default='N'),
        sa.Column('created_at_epoch_ms', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("validated IN ('N', 'Y')", name='ck_otp_tokens_validated'),
        sa.CheckConstraint('ttl_seconds >= 0', name='ck_otp_tokens_ttl_non_negative'),
    )
    # Serves find_active_for and the expire step of create
    op.create_index('ix_otp_tokens_lookup', 'otp_tokens', ['tenant_id', 'identity', 'validated'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_otp_tokens_lookup', table_name='otp_tokens')
    op.drop_table('otp_tokens')
