"""Create auth_tokens and sequence_counters tables

Revision ID: 3f2a9c1d7e45
Revises:
Create Date: 2025-07-14 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e45'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create token storage and project number counter tables."""
    op.create_table(
        'auth_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('account_id', sa.String(length=100), nullable=False),
        sa.Column('service_name', sa.String(length=50), nullable=False),
        sa.Column('encrypted_access_token', sa.Text(), nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('external_api_domain', sa.String(length=255), nullable=True),
        sa.Column('external_tenant_id', sa.String(length=100), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_auth_token_lookup', 'auth_tokens', ['account_id', 'service_name'], unique=True
    )
    op.create_index('ix_auth_token_last_used', 'auth_tokens', ['is_active', 'last_used_at'])

    op.create_table(
        'sequence_counters',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('department_code', sa.String(length=3), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('last_sequence_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('department_code', 'year', name='uq_sequence_department_year'),
        sa.CheckConstraint('last_sequence_number >= 0', name='ck_sequence_non_negative'),
    )


def downgrade() -> None:
    """Drop token storage and project number counter tables."""
    op.drop_table('sequence_counters')
    op.drop_index('ix_auth_token_last_used', table_name='auth_tokens')
    op.drop_index('ix_auth_token_lookup', table_name='auth_tokens')
    op.drop_table('auth_tokens')
