from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    ingest_phase_enum = sa.Enum("READ_METADATA", "READ_FILES", "COMPLETED", "ERROR", name="ingestphase")
    file_import_error_enum = sa.Enum("UNSUPPORTED_MEDIA_TYPE", "IO_ERROR", "UNEXPECTED_ERROR", name="fileimporterror")

    op.create_table(
        "media_file",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_media_file_sha256", "media_file", ["sha256"], unique=True)

    op.create_table(
        "import_session",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("base_path", sa.String(length=4096), nullable=False),
        sa.Column("phase", ingest_phase_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "asset_import",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("session_id", sa.String(length=32), sa.ForeignKey("import_session.id", ondelete="CASCADE"), nullable=False),
        sa.Column("path", sa.String(length=4096), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("phase", ingest_phase_enum, nullable=False),
        sa.UniqueConstraint("session_id", "path", name="uq_asset_import_session_path"),
    )
    op.create_index("ix_asset_import_session_id", "asset_import", ["session_id"])

    op.create_table(
        "file_import",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("asset_id", sa.String(length=32), sa.ForeignKey("asset_import.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("path", sa.String(length=4096), nullable=False),
        sa.Column("media_id", sa.String(length=32), sa.ForeignKey("media_file.id", ondelete="SET NULL"), nullable=True),
        sa.Column("error", file_import_error_enum, nullable=True),
    )
    op.create_index("ix_file_import_asset_id", "file_import", ["asset_id"])
    op.create_index("ix_file_import_media_id", "file_import", ["media_id"])

    op.create_table(
        "asset",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "asset_media",
        sa.Column("asset_id", sa.String(length=32), sa.ForeignKey("asset.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("media_id", sa.String(length=32), sa.ForeignKey("media_file.id"), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("asset_media")
    op.drop_table("asset")
    op.drop_index("ix_file_import_media_id", table_name="file_import")
    op.drop_index("ix_file_import_asset_id", table_name="file_import")
    op.drop_table("file_import")
    op.drop_index("ix_asset_import_session_id", table_name="asset_import")
    op.drop_table("asset_import")
    op.drop_table("import_session")
    op.drop_index("ix_media_file_sha256", table_name="media_file")
    op.drop_table("media_file")

    sa.Enum(name="fileimporterror").drop(op.get_bind(), checkfirst=False)
    sa.Enum(name="ingestphase").drop(op.get_bind(), checkfirst=False)
