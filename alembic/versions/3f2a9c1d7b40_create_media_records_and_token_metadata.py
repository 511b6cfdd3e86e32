"""create_media_records_and_token_metadata

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-18 09:12:41.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create media_records and token_metadata tables."""
    op.create_table(
        "media_records",
        sa.Column("mint", sa.String(length=44), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "READY", "FAILED", name="mediastatus"),
            nullable=False,
        ),
        sa.Column("content_uri", sa.String(), nullable=True),
        sa.Column("image_uri", sa.String(), nullable=True),
        sa.Column("image_type", sa.String(length=100), nullable=True),
        sa.Column("content_hash", sa.String(length=64), nullable=True),
        sa.Column("variants", sa.JSON(), nullable=True),
        sa.Column("output_content_type", sa.String(length=100), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error", sa.String(length=1000), nullable=True),
        sa.Column("last_attempt", sa.DateTime(), nullable=True),
        sa.Column("last_success", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("mint"),
    )
    op.create_index(op.f("ix_media_records_status"), "media_records", ["status"], unique=False)

    op.create_table(
        "token_metadata",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("mint", sa.String(length=44), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("content_uri", sa.String(), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=True),
        sa.Column("update_authority", sa.String(length=44), nullable=True),
        sa.Column("program", sa.String(length=20), nullable=False),
        sa.Column("collection", sa.String(length=44), nullable=True),
        sa.Column("token_standard", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mint", "version", name="uq_token_metadata_mint_version"),
    )
    op.create_index(op.f("ix_token_metadata_mint"), "token_metadata", ["mint"], unique=False)


def downgrade() -> None:
    """Drop media_records and token_metadata tables."""
    op.drop_index(op.f("ix_token_metadata_mint"), table_name="token_metadata")
    op.drop_table("token_metadata")
    op.drop_index(op.f("ix_media_records_status"), table_name="media_records")
    op.drop_table("media_records")
    sa.Enum(name="mediastatus").drop(op.get_bind(), checkfirst=True)
