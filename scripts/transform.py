"""Re-run the transform over the staged raw rows and reload skus.

Useful after editing categories or normalization rules without waiting for a
new Shopify export.
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.logic.replace import replace_catalog
from catalog_sync.logic.transform import transform_catalog
from catalog_sync.settings import SyncSettings
from catalog_sync.utils.log_config import configure_logging

logger = logging.getLogger("catalog_sync.scripts.transform")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="transform only; leave skus untouched")
    parser.add_argument("--skip-backup", action="store_true", help="do not copy skus before replacing it")
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging()
    settings = SyncSettings.from_env()
    engine = create_engine_from_env()

    result = transform_catalog(engine, settings)
    if args.dry_run:
        logger.info("Dry run: %s rows would be written, skipped %s", len(result.rows), result.skip_reasons)
        return 0
    if not result.rows:
        logger.error("Transform produced no rows; skus left unchanged")
        return 1
    replaced = replace_catalog(
        engine,
        result.rows,
        batch_size=settings.batch_size,
        backup=settings.backup_skus and not args.skip_backup,
    )
    logger.info("skus now holds %s rows (%s failed inserts)", replaced.final_count, replaced.failed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
