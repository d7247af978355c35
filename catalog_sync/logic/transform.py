"""Raw Shopify variants -> canonical SKU rows."""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.engine import Engine

from catalog_sync.db.tables import raw_skus, skus
from catalog_sync.errors import UnmatchedCategory
from catalog_sync.ingest.models import CanonicalVariant, CategoryDefinition, RawVariantRecord, TransformResult
from catalog_sync.ingest.reference import ReferenceData, load_reference
from catalog_sync.logic.normalize import split_tags
from catalog_sync.settings import SyncSettings

logger = logging.getLogger(__name__)

# Category-specific size lookups applied before the pp_sizes table.
PREPACK_SIZE_REMAPS: dict[int, dict[int, int]] = {
    401: {3: 33, 4: 44},
}


def resolve_category(tags: str, reference: ReferenceData) -> CategoryDefinition:
    """First tag part, in tag order, that names a known category.

    Parts forced to pre-order by a bare marker fall back to their own flag
    when no pre-order category matches.
    """
    parts = split_tags(tags)
    for part in parts:
        category = reference.find_category(part.name, part.is_preorder)
        if category is not None:
            return category
    for part in parts:
        if part.marked == part.is_preorder:
            continue
        category = reference.find_category(part.name, part.marked)
        if category is not None:
            return category
    raise UnmatchedCategory(tags)


def resolve_color(raw: str | None) -> str | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        parsed = None
    if isinstance(parsed, list):
        color = ", ".join(str(item).strip() for item in parsed if str(item).strip())
    else:
        color = raw.translate(str.maketrans("", "", '[]"')).strip()
    return color or None


def resolve_size(record: RawVariantRecord, category_id: int, reference: ReferenceData, prepack_category_ids: Iterable[int]) -> str | None:
    if category_id not in prepack_category_ids:
        return record.size
    suffix = (record.sku_id or "").rsplit("-", 1)[-1].strip()
    try:
        size = int(suffix)
    except ValueError:
        return record.size
    lookup = PREPACK_SIZE_REMAPS.get(category_id, {}).get(size, size)
    return reference.prepack_label(lookup) or str(size)


def parse_price(value: str | None) -> Decimal | None:
    if value is None or not str(value).strip():
        return None
    try:
        return Decimal(str(value).strip().replace(",", "").lstrip("$"))
    except InvalidOperation:
        return None


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


def price_display(cad: str | None, usd: str | None) -> str | None:
    if cad and usd:
        return f"CAD: {cad} / USD: {usd}"
    return None


def _skip_reason(record: RawVariantRecord, excluded_tags: Iterable[str]) -> str | None:
    if not record.sku_id or not record.sku_id.strip():
        return "missing_sku"
    if not record.tags or not record.tags.strip():
        return "missing_tags"
    if any(marker.lower() in record.tags.lower() for marker in excluded_tags):
        return "excluded_tag"
    return None


def build_canonical_rows(
    records: Iterable[RawVariantRecord],
    reference: ReferenceData,
    priorities: Mapping[str, int],
    settings: SyncSettings,
) -> TransformResult:
    """Pure transform over a raw snapshot; identical inputs give identical rows."""
    result = TransformResult()
    reasons: Counter[str] = Counter()
    prepack_ids = frozenset(settings.prepack_category_ids)
    for record in records:
        result.attempted += 1
        reason = _skip_reason(record, settings.excluded_tags)
        if reason:
            reasons[reason] += 1
            continue
        try:
            category = resolve_category(record.tags, reference)
        except UnmatchedCategory as exc:
            logger.debug("Skipping %s: %s", record.sku_id, exc)
            reasons["unmatched_category"] += 1
            continue
        sku_id = record.sku_id.strip().upper()
        priority = priorities.get(sku_id)
        cad, usd = _blank_to_none(record.cad_ws_price), _blank_to_none(record.usd_ws_price)
        result.rows.append(
            CanonicalVariant(
                sku_id=sku_id,
                category_id=category.id,
                description=record.display_name,
                order_entry_description=record.order_entry_description,
                quantity=record.quantity,
                price=price_display(cad, usd),
                price_cad=cad,
                price_usd=usd,
                price_cad_value=parse_price(cad),
                price_usd_value=parse_price(usd),
                msrp_cad=_blank_to_none(record.msrp_cad),
                msrp_usd=_blank_to_none(record.msrp_usd),
                size=resolve_size(record, category.id, reference, prepack_ids),
                fabric_content=record.fabric,
                sku_color=resolve_color(record.color),
                show_in_preorder=category.is_preorder,
                shopify_variant_id=record.shopify_id,
                shopify_product_id=record.product_gid,
                shopify_image_url=record.image_url,
                display_priority=priority if priority is not None else settings.default_display_priority,
            )
        )
        result.matched += 1
    result.skipped = sum(reasons.values())
    result.skip_reasons = dict(sorted(reasons.items()))
    return result


def load_raw_records(engine: Engine) -> list[RawVariantRecord]:
    columns = [raw_skus.c[name] for name in RawVariantRecord.__dataclass_fields__]
    with engine.connect() as conn:
        rows = conn.execute(select(*columns).order_by(raw_skus.c.id)).mappings().all()
    return [RawVariantRecord(**row) for row in rows]


def load_display_priorities(engine: Engine) -> dict[str, int]:
    """Curated display priorities from the current canonical table, keyed by upper-cased SKU."""
    query = select(skus.c.sku_id, skus.c.display_priority).where(skus.c.display_priority.is_not(None)).order_by(skus.c.id)
    priorities: dict[str, int] = {}
    with engine.connect() as conn:
        for sku_id, priority in conn.execute(query):
            priorities.setdefault(sku_id.upper(), priority)
    return priorities


def transform_catalog(engine: Engine, settings: SyncSettings, reference: ReferenceData | None = None) -> TransformResult:
    reference = reference or load_reference(engine)
    priorities = load_display_priorities(engine)
    records = load_raw_records(engine)
    logger.info("Transforming %s raw variants (%s preserved priorities)", len(records), len(priorities))
    result = build_canonical_rows(records, reference, priorities, settings)
    logger.info(
        "Transform matched %s of %s raw variants, skipped %s %s",
        result.matched,
        result.attempted,
        result.skipped,
        result.skip_reasons,
    )
    return result
