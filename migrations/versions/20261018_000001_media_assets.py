from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "media_assets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("album_id", sa.String(length=64), nullable=False),
        sa.Column("original_name", sa.String(length=512), nullable=False),
        sa.Column("stored_filename", sa.String(length=255), nullable=False, unique=True),
        sa.Column("stored_relative_path", sa.String(length=1024), nullable=False, unique=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("content_id", sa.String(length=255), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("exif_taken_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("rotation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_generation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("public_token", sa.String(length=64), nullable=True, unique=True),
        sa.Column("thumbnail_path", sa.String(length=1024), nullable=True),
        sa.Column("medium_path", sa.String(length=1024), nullable=True),
        sa.Column("large_path", sa.String(length=1024), nullable=True),
        sa.Column("transcoded_video_path", sa.String(length=1024), nullable=True),
        sa.UniqueConstraint("checksum", "album_id", name="uq_media_assets_checksum_album"),
    )
    op.create_index("ix_media_assets_checksum", "media_assets", ["checksum"])
    op.create_index("ix_media_assets_owner_content_id", "media_assets", ["owner_id", "content_id"])
    op.create_index("ix_media_assets_album_display_order", "media_assets", ["album_id", "display_order"])

    op.create_table(
        "recordings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("album_id", sa.String(length=64), nullable=False),
        sa.Column("original_name", sa.String(length=512), nullable=False),
        sa.Column("audio_relative_path", sa.String(length=1024), nullable=False, unique=True),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("public_token", sa.String(length=64), nullable=True, unique=True),
    )
    op.create_index("ix_recordings_album_id", "recordings", ["album_id"])


def downgrade() -> None:
    op.drop_index("ix_recordings_album_id", table_name="recordings")
    op.drop_table("recordings")
    op.drop_index("ix_media_assets_album_display_order", table_name="media_assets")
    op.drop_index("ix_media_assets_owner_content_id", table_name="media_assets")
    op.drop_index("ix_media_assets_checksum", table_name="media_assets")
    op.drop_table("media_assets")
