"""create nodes table

Revision ID: 3c1f0b7d2e91
Revises:
Create Date: 2026-10-18 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0b7d2e91'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'nodes',
        sa.Column('path', sa.String(length=512), nullable=False),
        sa.Column('parent', sa.String(length=512), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('path'),
    )
    op.create_index('ix_nodes_parent', 'nodes', ['parent'], unique=False)
    # children listing ordered by key
    op.create_index('idx_nodes_parent_path', 'nodes', ['parent', 'path'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_nodes_parent_path', table_name='nodes')
    op.drop_index('ix_nodes_parent', table_name='nodes')
    op.drop_table('nodes')
