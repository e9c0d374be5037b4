"""Create project_mappings and deal_project_mappings tables

Revision ID: 7b1e4d2c9a60
Revises: 3f2a9c1d7e45
Create Date: 2025-08-02 14:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7b1e4d2c9a60'
down_revision: Union[str, None] = '3f2a9c1d7e45'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the project number to deal mapping tables."""
    op.create_table(
        'project_mappings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('project_number', sa.String(length=32), nullable=False),
        sa.Column('department_name', sa.String(length=255), nullable=False),
        sa.Column('department_code', sa.String(length=3), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'department_code', 'year', 'sequence_number', name='uq_project_mapping_sequence'
        ),
    )
    op.create_index('ix_project_mapping_number', 'project_mappings', ['project_number'])

    op.create_table(
        'deal_project_mappings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('deal_id', sa.BigInteger(), nullable=False),
        sa.Column('project_mapping_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['project_mapping_id'], ['project_mappings.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id', name='uq_deal_project_mapping_deal'),
    )
    op.create_index(
        'ix_deal_project_mapping_project', 'deal_project_mappings', ['project_mapping_id']
    )


def downgrade() -> None:
    """Drop the project number to deal mapping tables."""
    op.drop_index('ix_deal_project_mapping_project', table_name='deal_project_mappings')
    op.drop_table('deal_project_mappings')
    op.drop_index('ix_project_mapping_number', table_name='project_mappings')
    op.drop_table('project_mappings')
