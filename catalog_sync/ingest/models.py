"""Catalog sync data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(slots=True)
class CategoryDefinition:
    id: int
    name: str
    is_preorder: bool


@dataclass(slots=True)
class RawVariantRecord:
    shopify_gid: str
    sku_id: str | None
    display_name: str | None = None
    size: str | None = None
    quantity: int = 0
    price: str | None = None
    tags: str | None = None
    order_entry_description: str | None = None
    color: str | None = None
    fabric: str | None = None
    cad_ws_price: str | None = None
    usd_ws_price: str | None = None
    msrp_cad: str | None = None
    msrp_usd: str | None = None
    image_url: str | None = None
    shopify_id: int | None = None
    product_gid: str | None = None
    inventory_item_gid: str | None = None
    weight: float | None = None
    weight_unit: str | None = None

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class InventoryLevelRecord:
    level_gid: str
    parent_gid: str
    incoming: int = 0
    committed: int = 0

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CanonicalVariant:
    sku_id: str
    category_id: int
    description: str | None
    order_entry_description: str | None
    quantity: int | None
    price: str | None
    price_cad: str | None
    price_usd: str | None
    price_cad_value: Decimal | None
    price_usd_value: Decimal | None
    msrp_cad: str | None
    msrp_usd: str | None
    size: str | None
    fabric_content: str | None
    sku_color: str | None
    show_in_preorder: bool
    shopify_variant_id: int | None
    shopify_product_id: str | None
    shopify_image_url: str | None
    display_priority: int

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SyncRun:
    id: int
    trigger_kind: str
    completion_mode: str
    external_job_id: str | None
    status: str
    record_count: int | None
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None = None


@dataclass(slots=True)
class IngestResult:
    processed: int = 0
    failed: int = 0
    ignored: int = 0
    inventory_levels: int = 0


@dataclass(slots=True)
class TransformResult:
    rows: list[CanonicalVariant] = field(default_factory=list)
    attempted: int = 0
    matched: int = 0
    skipped: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.matched


@dataclass(slots=True)
class ReplaceResult:
    inserted: int = 0
    failed: int = 0
    duplicates_removed: int = 0
    final_count: int = 0
    backup_table: str | None = None
