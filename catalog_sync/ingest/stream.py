"""Streaming JSONL ingestion into the raw staging tables."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterable, Callable
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from catalog_sync.db.tables import raw_inventory_levels, raw_skus
from catalog_sync.errors import MalformedLine
from catalog_sync.ingest.models import IngestResult, InventoryLevelRecord, RawVariantRecord

logger = logging.getLogger(__name__)

GID_NUMBER_RE = re.compile(r"/(\d+)$")

METAFIELD_ALIASES = {
    "tags": "mfOrderEntryCollection",
    "order_entry_description": "mfOrderEntryDescription",
    "fabric": "mfFabric",
    "color": "mfColor",
    "cad_ws_price": "mfCADWSPrice",
    "usd_ws_price": "mfUSDWSPrice",
    "msrp_cad": "mfMSRPCAD",
    "msrp_usd": "mfMSRPUSD",
}

RAW_UPSERT = text(
    """
    INSERT INTO raw_skus (
      shopify_gid, shopify_id, sku_id, display_name, size, quantity, price, tags,
      order_entry_description, color, fabric, cad_ws_price, usd_ws_price, msrp_cad, msrp_usd,
      image_url, product_gid, inventory_item_gid, weight, weight_unit
    )
    VALUES (
      :shopify_gid, :shopify_id, :sku_id, :display_name, :size, :quantity, :price, :tags,
      :order_entry_description, :color, :fabric, :cad_ws_price, :usd_ws_price, :msrp_cad, :msrp_usd,
      :image_url, :product_gid, :inventory_item_gid, :weight, :weight_unit
    )
    ON CONFLICT (shopify_gid) DO UPDATE SET
      shopify_id = EXCLUDED.shopify_id,
      sku_id = EXCLUDED.sku_id,
      display_name = EXCLUDED.display_name,
      size = EXCLUDED.size,
      quantity = EXCLUDED.quantity,
      price = EXCLUDED.price,
      tags = EXCLUDED.tags,
      order_entry_description = EXCLUDED.order_entry_description,
      color = EXCLUDED.color,
      fabric = EXCLUDED.fabric,
      cad_ws_price = EXCLUDED.cad_ws_price,
      usd_ws_price = EXCLUDED.usd_ws_price,
      msrp_cad = EXCLUDED.msrp_cad,
      msrp_usd = EXCLUDED.msrp_usd,
      image_url = EXCLUDED.image_url,
      product_gid = EXCLUDED.product_gid,
      inventory_item_gid = EXCLUDED.inventory_item_gid,
      weight = EXCLUDED.weight,
      weight_unit = EXCLUDED.weight_unit
    """
)

LEVEL_UPSERT = text(
    """
    INSERT INTO raw_inventory_levels (level_gid, parent_gid, incoming, committed)
    VALUES (:level_gid, :parent_gid, :incoming, :committed)
    ON CONFLICT (level_gid) DO UPDATE SET
      parent_gid = EXCLUDED.parent_gid,
      incoming = EXCLUDED.incoming,
      committed = EXCLUDED.committed
    """
)


def parse_gid(gid: str | None) -> int | None:
    """Numeric tail of a Shopify GID, e.g. gid://shopify/ProductVariant/42 -> 42."""
    if not gid:
        return None
    match = GID_NUMBER_RE.search(gid)
    return int(match.group(1)) if match else None


def gid_resource(gid: str | None) -> str | None:
    if not gid or not gid.startswith("gid://shopify/"):
        return None
    return gid[len("gid://shopify/"):].split("/", 1)[0]


def parse_line(line: str) -> dict[str, Any]:
    try:
        item = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedLine(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(item, dict):
        raise MalformedLine(f"Expected an object, got {type(item).__name__}")
    return item


def variant_from_item(item: dict[str, Any]) -> RawVariantRecord:
    gid = item["id"]
    product = item.get("product") or {}
    inventory_item = item.get("inventoryItem") or {}
    weight = ((inventory_item.get("measurement") or {}).get("weight")) or {}
    variant_image = (item.get("image") or {}).get("url")
    featured_image = ((((product.get("featuredMedia") or {}).get("preview") or {}).get("image")) or {}).get("url")
    metafields = {
        field: (product.get(alias) or {}).get("value")
        for field, alias in METAFIELD_ALIASES.items()
    }
    return RawVariantRecord(
        shopify_gid=gid,
        shopify_id=parse_gid(gid),
        sku_id=item.get("sku") or None,
        display_name=item.get("displayName") or product.get("title") or "",
        # Variant title carries the size option.
        size=item.get("title") or "",
        quantity=int(item.get("inventoryQuantity") or 0),
        price=item.get("price"),
        image_url=variant_image or featured_image,
        product_gid=product.get("id"),
        inventory_item_gid=inventory_item.get("id"),
        weight=weight.get("value"),
        weight_unit=weight.get("unit"),
        **metafields,
    )


def inventory_level_from_item(item: dict[str, Any]) -> InventoryLevelRecord:
    quantities = {q.get("name"): int(q.get("quantity") or 0) for q in item.get("quantities") or []}
    return InventoryLevelRecord(
        level_gid=item["id"],
        parent_gid=item["__parentId"],
        incoming=quantities.get("incoming", 0),
        committed=quantities.get("committed", 0),
    )


class StreamIngestor:
    """Materializes a bulk-operation JSONL stream into raw_skus."""

    def __init__(self, engine: Engine, *, batch_size: int = 500, progress_every: int = 100) -> None:
        self.engine = engine
        self.batch_size = batch_size
        self.progress_every = progress_every

    async def process(
        self,
        lines: AsyncIterable[str],
        on_progress: Callable[[int], Any] | None = None,
    ) -> IngestResult:
        result = IngestResult()
        variants: list[dict[str, Any]] = []
        levels: list[dict[str, Any]] = []
        line_no = 0
        async for line in lines:
            line_no += 1
            if not line.strip():
                continue
            try:
                item = parse_line(line)
                kind = gid_resource(item.get("id"))
                if kind == "ProductVariant":
                    variants.append(variant_from_item(item).as_row())
                elif kind == "InventoryLevel" and item.get("__parentId"):
                    levels.append(inventory_level_from_item(item).as_row())
                else:
                    kind = None
            except (MalformedLine, KeyError, TypeError, ValueError) as exc:
                result.failed += 1
                logger.warning("Skipping line %s: %s", line_no, exc)
                continue
            if kind == "ProductVariant":
                result.processed += 1
                if on_progress and result.processed % self.progress_every == 0:
                    _notify(on_progress, result.processed)
            elif kind == "InventoryLevel":
                result.inventory_levels += 1
            else:
                result.ignored += 1
            if len(variants) + len(levels) >= self.batch_size:
                await self._flush(variants, levels)
        await self._flush(variants, levels)
        logger.info(
            "Ingested %s variants (%s inventory levels, %s malformed, %s ignored)",
            result.processed,
            result.inventory_levels,
            result.failed,
            result.ignored,
        )
        return result

    async def _flush(self, variants: list[dict[str, Any]], levels: list[dict[str, Any]]) -> None:
        if not variants and not levels:
            return
        batch_variants, batch_levels = list(variants), list(levels)
        variants.clear()
        levels.clear()
        await asyncio.get_running_loop().run_in_executor(
            None, self._persist, batch_variants, batch_levels
        )

    def _persist(self, variants: list[dict[str, Any]], levels: list[dict[str, Any]]) -> None:
        with self.engine.begin() as conn:
            if variants:
                conn.execute(RAW_UPSERT, variants)
            if levels:
                conn.execute(LEVEL_UPSERT, levels)


def clear_staging(engine: Engine) -> None:
    """Empty the raw tables so each run stages a complete snapshot."""
    with engine.begin() as conn:
        conn.execute(raw_inventory_levels.delete())
        conn.execute(raw_skus.delete())


def _notify(callback: Callable[[int], Any], count: int) -> None:
    try:
        callback(count)
    except Exception:
        logger.warning("Progress callback failed at %s records", count, exc_info=True)
