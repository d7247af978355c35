"""Seed the category and prepack-size reference tables."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from sqlalchemy import text

from catalog_sync.db.migrate import run_migrations
from catalog_sync.db.session import create_engine_from_env, session_scope
from catalog_sync.ingest import load_reference_seed
from catalog_sync.utils.log_config import configure_logging

logger = logging.getLogger("catalog_sync.scripts.seed")


def main() -> None:
    load_dotenv()
    configure_logging()
    engine = create_engine_from_env()
    run_migrations(engine)
    categories, prepack_sizes = load_reference_seed()
    with session_scope(engine) as session:
        for category in categories:
            session.execute(
                text(
                    """
                    INSERT INTO sku_categories (id, name, is_preorder)
                    VALUES (:id, :name, :is_preorder)
                    ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, is_preorder = EXCLUDED.is_preorder
                    """
                ),
                {"id": category.id, "name": category.name, "is_preorder": category.is_preorder},
            )
        for size, label in prepack_sizes.items():
            session.execute(
                text(
                    """
                    INSERT INTO pp_sizes (size, corresponding_pp)
                    VALUES (:size, :label)
                    ON CONFLICT (size) DO UPDATE SET corresponding_pp = EXCLUDED.corresponding_pp
                    """
                ),
                {"size": size, "label": label},
            )
    logger.info("Seeded %s categories and %s prepack sizes", len(categories), len(prepack_sizes))


if __name__ == "__main__":
    main()
