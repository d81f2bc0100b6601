"""add media assets and variants, user avatar reference

Revision ID: 7c2e4b8a1f35
Revises: 3f1a9c2b7d10
Create Date: 2026-01-18 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c2e4b8a1f35'
down_revision: Union[str, Sequence[str], None] = '3f1a9c2b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "media_assets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("storage_path", sa.String(length=500), nullable=False),
        sa.Column("public_url", sa.String(length=500), nullable=True),
        sa.Column("alt_text", sa.String(length=300), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("file_hash", sa.String(length=64), nullable=True),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("upload_ip", sa.String(length=64), nullable=True),
        sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_media_assets_hash", "media_assets", ["file_hash"])
    op.create_index("idx_media_assets_mime", "media_assets", ["mime_type"])
    op.create_index("idx_media_assets_created", "media_assets", ["created_at"])

    op.create_table(
        "media_variants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("media_asset_id", sa.Integer(), sa.ForeignKey("media_assets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_name", sa.String(length=50), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("storage_path", sa.String(length=500), nullable=False),
        sa.Column("public_url", sa.String(length=500), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("media_asset_id", "variant_name", name="uq_media_variants_asset_name"),
    )

    with op.batch_alter_table("users") as batch:
        batch.add_column(sa.Column("avatar_media_id", sa.Integer(), nullable=True))
        batch.create_foreign_key(
            "fk_users_avatar_media_id", "media_assets", ["avatar_media_id"], ["id"], ondelete="SET NULL"
        )


def downgrade() -> None:
    with op.batch_alter_table("users") as batch:
        batch.drop_constraint("fk_users_avatar_media_id", type_="foreignkey")
        batch.drop_column("avatar_media_id")
    op.drop_table("media_variants")
    op.drop_index("idx_media_assets_created", table_name="media_assets")
    op.drop_index("idx_media_assets_mime", table_name="media_assets")
    op.drop_index("idx_media_assets_hash", table_name="media_assets")
    op.drop_table("media_assets")
