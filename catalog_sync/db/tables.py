"""Table definitions shared by the pipeline, migrations and tests."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
)

metadata = MetaData()

sku_categories = Table(
    "sku_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("name", Text, nullable=False),
    Column("is_preorder", Boolean, nullable=False, default=False),
)

pp_sizes = Table(
    "pp_sizes",
    metadata,
    Column("size", Integer, primary_key=True, autoincrement=False),
    Column("corresponding_pp", Text, nullable=False),
)

raw_skus = Table(
    "raw_skus",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("shopify_gid", Text, nullable=False, unique=True),
    Column("shopify_id", BigInteger),
    Column("sku_id", Text),
    Column("display_name", Text),
    Column("size", Text),
    Column("quantity", Integer),
    Column("price", Text),
    Column("tags", Text),
    Column("order_entry_description", Text),
    Column("color", Text),
    Column("fabric", Text),
    Column("cad_ws_price", Text),
    Column("usd_ws_price", Text),
    Column("msrp_cad", Text),
    Column("msrp_usd", Text),
    Column("image_url", Text),
    Column("product_gid", Text),
    Column("inventory_item_gid", Text),
    Column("weight", Float),
    Column("weight_unit", Text),
)

raw_inventory_levels = Table(
    "raw_inventory_levels",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("level_gid", Text, nullable=False, unique=True),
    Column("parent_gid", Text, nullable=False),
    Column("incoming", Integer, nullable=False, default=0),
    Column("committed", Integer, nullable=False, default=0),
)

skus = Table(
    "skus",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sku_id", Text, nullable=False),
    Column("category_id", Integer, nullable=False),
    Column("description", Text),
    Column("order_entry_description", Text),
    Column("quantity", Integer),
    Column("price", Text),
    Column("price_cad", Text),
    Column("price_usd", Text),
    Column("price_cad_value", Numeric(12, 2)),
    Column("price_usd_value", Numeric(12, 2)),
    Column("msrp_cad", Text),
    Column("msrp_usd", Text),
    Column("size", Text),
    Column("fabric_content", Text),
    Column("sku_color", Text),
    Column("show_in_preorder", Boolean, nullable=False, default=False),
    Column("shopify_variant_id", BigInteger),
    Column("shopify_product_id", Text),
    Column("shopify_image_url", Text),
    Column("display_priority", Integer, nullable=False),
    Column("date_added", DateTime),
    Index("ix_skus_sku_category", "sku_id", "category_id"),
)

sync_runs = Table(
    "sync_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trigger_kind", Text, nullable=False),
    Column("completion_mode", Text, nullable=False, default="poll"),
    Column("external_job_id", Text),
    Column("status", Text, nullable=False),
    Column("record_count", Integer),
    Column("error_message", Text),
    Column("lease_token", Text, nullable=False, unique=True),
    Column("started_at", DateTime, nullable=False),
    Column("completed_at", DateTime),
)

# At most one run may hold the lease.
Index(
    "uq_sync_runs_single_started",
    sync_runs.c.status,
    unique=True,
    sqlite_where=sync_runs.c.status == "started",
    postgresql_where=sync_runs.c.status == "started",
)
Index("ix_sync_runs_external_job_id", sync_runs.c.external_job_id)
