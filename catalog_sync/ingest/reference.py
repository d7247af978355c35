"""Category and prepack-size reference lookups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Engine

from catalog_sync.db.tables import pp_sizes, sku_categories
from catalog_sync.ingest.models import CategoryDefinition

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReferenceData:
    categories: dict[tuple[str, bool], CategoryDefinition] = field(default_factory=dict)
    prepack_sizes: dict[int, str] = field(default_factory=dict)

    @classmethod
    def build(cls, categories: Iterable[CategoryDefinition], prepack_sizes: dict[int, str]) -> "ReferenceData":
        index: dict[tuple[str, bool], CategoryDefinition] = {}
        for category in categories:
            key = (category_key(category.name), category.is_preorder)
            if key in index:
                logger.warning("Duplicate category %r (preorder=%s); keeping id %s", category.name, category.is_preorder, index[key].id)
                continue
            index[key] = category
        return cls(categories=index, prepack_sizes=dict(prepack_sizes))

    def find_category(self, name: str, is_preorder: bool) -> CategoryDefinition | None:
        return self.categories.get((category_key(name), is_preorder))

    def prepack_label(self, size: int) -> str | None:
        return self.prepack_sizes.get(size)


def category_key(name: str) -> str:
    return " ".join(name.split()).lower()


def load_reference(engine: Engine) -> ReferenceData:
    with engine.connect() as conn:
        categories = [
            CategoryDefinition(id=row.id, name=row.name, is_preorder=bool(row.is_preorder))
            for row in conn.execute(select(sku_categories.c.id, sku_categories.c.name, sku_categories.c.is_preorder))
        ]
        sizes = {row.size: row.corresponding_pp for row in conn.execute(select(pp_sizes))}
    logger.info("Loaded %s categories and %s prepack sizes", len(categories), len(sizes))
    return ReferenceData.build(categories, sizes)
