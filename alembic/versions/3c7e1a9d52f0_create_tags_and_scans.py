"""create brands, products, tags and tag_scans

Revision ID: 3c7e1a9d52f0
Revises:
Create Date: 2026-10-18 10:12:41.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c7e1a9d52f0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "brands",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("logo_url", sa.String(length=1024), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "brand_id",
            sa.Integer(),
            sa.ForeignKey("brands.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "metadata_json",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_products_brand_id", "products", ["brand_id"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "product_ids",
            postgresql.JSONB,
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("is_stamped", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("hash_tx", sa.String(length=128), nullable=True),
        sa.Column("chain_hash", sa.String(length=66), nullable=True),
        # ChainStatus ordinal (0..5), cached copy of the registry value
        sa.Column("chain_status", sa.SmallInteger(), nullable=True),
        sa.Column("publish_status", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column(
            "metadata_json",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("scan_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "chain_status IS NULL OR (chain_status >= 0 AND chain_status <= 5)",
            name="ck_tags_chain_status_range",
        ),
    )
    op.create_index("ix_tags_chain_hash", "tags", ["chain_hash"])

    op.create_table(
        "tag_scans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tag_id",
            sa.Integer(),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scan_number", sa.Integer(), nullable=False),
        sa.Column("fingerprint_id", sa.String(length=128), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("user_agent", sa.String(length=512), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("location_name", sa.String(length=256), nullable=True),
        sa.Column("is_claimed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_first_hand", sa.Boolean(), nullable=True),
        sa.Column("source_info", sa.String(length=256), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        # gap-free per-tag sequence backstop
        sa.UniqueConstraint("tag_id", "scan_number", name="uq_tag_scans_seq"),
        sa.CheckConstraint("scan_number >= 1", name="ck_tag_scans_scan_number_positive"),
    )
    op.create_index("ix_tag_scans_tag_created", "tag_scans", ["tag_id", "created_at"])
    op.create_index("ix_tag_scans_tag_fingerprint", "tag_scans", ["tag_id", "fingerprint_id"])


def downgrade():
    op.drop_index("ix_tag_scans_tag_fingerprint", table_name="tag_scans")
    op.drop_index("ix_tag_scans_tag_created", table_name="tag_scans")
    op.drop_table("tag_scans")
    op.drop_index("ix_tags_chain_hash", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_products_brand_id", table_name="products")
    op.drop_table("products")
    op.drop_table("brands")
