"""add site settings

Revision ID: b5d0e3a6c924
Revises: 7c2e4b8a1f35
Create Date: 2026-01-18 11:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b5d0e3a6c924'
down_revision: Union[str, Sequence[str], None] = '7c2e4b8a1f35'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Default rows are seeded by scripts/init_db.py, not here.
    op.create_table(
        "site_settings",
        sa.Column("key", sa.String(length=100), primary_key=True, nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="string"),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="general"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_site_settings_category", "site_settings", ["category"])


def downgrade() -> None:
    op.drop_index("idx_site_settings_category", table_name="site_settings")
    op.drop_table("site_settings")
