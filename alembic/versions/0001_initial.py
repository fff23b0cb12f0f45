"""initial schema: raw assets, slabs, catalog, prices, sync bookkeeping

Revision ID: 0001_initial
Revises:
Create Date: 2026-01-12 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "assets_raw",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("contract_address", sa.String(64), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=False),
        sa.Column("owner_address", sa.String(64), nullable=False),
        sa.Column("token_uri", sa.String(), nullable=True),
        sa.Column("raw_metadata", JSONType, nullable=True),
        sa.Column("last_indexed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_address", "token_id", name="uq_assets_raw_contract_token"),
    )
    op.create_index("ix_assets_raw_owner_contract", "assets_raw", ["owner_address", "contract_address"])

    op.create_table(
        "slabs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("raw_asset_id", sa.Uuid(), nullable=False),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("cert_number", sa.String(64), nullable=True),
        sa.Column("grader", sa.String(16), nullable=True),
        sa.Column("grade", sa.String(16), nullable=True),
        sa.Column("set_name", sa.String(255), nullable=True),
        sa.Column("card_name", sa.String(255), nullable=True),
        sa.Column("card_number", sa.String(32), nullable=True),
        sa.Column("variant", sa.String(64), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("fingerprint_text", sa.String(), nullable=True),
        sa.Column("parse_status", sa.String(16), nullable=False),
        sa.Column("catalog_card_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["raw_asset_id"], ["assets_raw.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("raw_asset_id"),
    )
    op.create_index("ix_slabs_set_name", "slabs", ["set_name"])
    op.create_index("ix_slabs_card_name", "slabs", ["card_name"])

    op.create_table(
        "catalog_sets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("set_name", sa.String(255), nullable=False),
        sa.Column("upstream_set_id", sa.String(64), nullable=True),
        sa.Column("series", sa.String(128), nullable=True),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("total_cards", sa.Integer(), nullable=False),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("symbol_url", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("set_name"),
        sa.UniqueConstraint("upstream_set_id"),
    )

    op.create_table(
        "catalog_cards",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("upstream_card_id", sa.String(64), nullable=False),
        sa.Column("card_name", sa.String(255), nullable=False),
        sa.Column("card_number", sa.String(32), nullable=False),
        sa.Column("number_key", sa.String(32), nullable=False),
        sa.Column("catalog_set_id", sa.Integer(), nullable=False),
        sa.Column("set_name", sa.String(255), nullable=False),
        sa.Column("image_small", sa.String(), nullable=True),
        sa.Column("image_large", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["catalog_set_id"], ["catalog_sets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("upstream_card_id"),
    )
    op.create_index("ix_catalog_cards_name_number", "catalog_cards", ["card_name", "number_key"])
    op.create_index("ix_catalog_cards_set_name", "catalog_cards", ["set_name"])

    op.create_table(
        "prices",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("slab_id", sa.Uuid(), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("market_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("confidence", sa.String(8), nullable=False),
        sa.Column("retrieved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_response", JSONType, nullable=True),
        sa.ForeignKeyConstraint(["slab_id"], ["slabs.id"], ondelete="CASCADE"),
        sa.CheckConstraint("confidence IN ('high', 'medium', 'low')", name="ck_prices_confidence"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prices_slab_retrieved", "prices", ["slab_id", "retrieved_at"])

    op.create_table(
        "sync_checkpoints",
        sa.Column("owner_address", sa.String(64), nullable=False),
        sa.Column("contract_address", sa.String(64), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("owner_address", "contract_address"),
    )

    op.create_table(
        "sync_runs",
        sa.Column("run_id", sa.Uuid(), nullable=False),
        sa.Column("job_name", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )


def downgrade() -> None:
    op.drop_table("sync_runs")
    op.drop_table("sync_checkpoints")
    op.drop_index("ix_prices_slab_retrieved", table_name="prices")
    op.drop_table("prices")
    op.drop_index("ix_catalog_cards_set_name", table_name="catalog_cards")
    op.drop_index("ix_catalog_cards_name_number", table_name="catalog_cards")
    op.drop_table("catalog_cards")
    op.drop_table("catalog_sets")
    op.drop_index("ix_slabs_card_name", table_name="slabs")
    op.drop_index("ix_slabs_set_name", table_name="slabs")
    op.drop_table("slabs")
    op.drop_index("ix_assets_raw_owner_contract", table_name="assets_raw")
    op.drop_table("assets_raw")
