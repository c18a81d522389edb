"""add_rat_owner_position

Revision ID: 8c41e5d2b7a9
Revises: 3f9d2c71a8b4
Create Date: 2026-10-18 15:02:11.540318

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c41e5d2b7a9"
down_revision: Union[str, Sequence[str], None] = "3f9d2c71a8b4"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Track the chain position of the event that set each rat's owner."""
    op.add_column("rats", sa.Column("owner_block_number", sa.Integer(), nullable=True))
    op.add_column("rats", sa.Column("owner_log_index", sa.Integer(), nullable=True))


def downgrade() -> None:
    op.drop_column("rats", "owner_log_index")
    op.drop_column("rats", "owner_block_number")
