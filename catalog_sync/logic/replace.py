"""Truncate-and-reload of the canonical skus table.

The table is emptied and reloaded in separate transactions. A crash between
the two leaves ``skus`` partially populated until the next successful run;
readers must tolerate that window. A copy of the previous table is taken
first (``skus_backup_<timestamp>``) as the recovery path.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from catalog_sync.db.tables import skus
from catalog_sync.errors import RowInsertError
from catalog_sync.ingest.models import CanonicalVariant, ReplaceResult
from catalog_sync.utils.dates import utc_now

logger = logging.getLogger(__name__)

DEDUP_SQL = text(
    """
    DELETE FROM skus
    WHERE id NOT IN (
        SELECT keep_id FROM (
            SELECT MAX(id) AS keep_id FROM skus GROUP BY sku_id, category_id
        ) AS latest
    )
    """
)


def backup_skus(conn: Connection, *, stamp: datetime | None = None) -> str:
    """Copy skus into a new timestamped table and return its name."""
    name = f"skus_backup_{(stamp or utc_now()):%Y%m%d_%H%M%S_%f}"
    conn.execute(text(f"CREATE TABLE {name} AS SELECT * FROM skus"))
    return name


def truncate_skus(conn: Connection) -> None:
    if conn.dialect.name == "postgresql":
        conn.execute(text("TRUNCATE TABLE skus RESTART IDENTITY"))
    else:
        conn.execute(skus.delete())


def dedupe_skus(conn: Connection) -> int:
    """Keep only the most recently inserted row per (sku_id, category_id)."""
    result = conn.execute(DEDUP_SQL)
    return max(result.rowcount or 0, 0)


def replace_catalog(
    engine: Engine,
    rows: Sequence[CanonicalVariant],
    *,
    batch_size: int = 500,
    backup: bool = True,
) -> ReplaceResult:
    result = ReplaceResult()
    stamp = utc_now()
    payload = [{**row.as_row(), "date_added": stamp} for row in rows]

    if backup:
        try:
            with engine.begin() as conn:
                result.backup_table = backup_skus(conn, stamp=stamp)
        except SQLAlchemyError:
            logger.warning("Could not back up skus; replacing without a backup", exc_info=True)
        else:
            logger.info("Backed up skus to %s", result.backup_table)

    with engine.begin() as conn:
        truncate_skus(conn)
    logger.info("Truncated skus; inserting %s rows", len(payload))

    for start in range(0, len(payload), batch_size):
        batch = payload[start:start + batch_size]
        try:
            with engine.begin() as conn:
                conn.execute(insert(skus), batch)
            result.inserted += len(batch)
        except SQLAlchemyError as exc:
            logger.warning("Batch at offset %s failed (%s); retrying row by row", start, exc.__class__.__name__)
            inserted, failed = _insert_rows(engine, batch)
            result.inserted += inserted
            result.failed += failed

    with engine.begin() as conn:
        result.duplicates_removed = dedupe_skus(conn)
        result.final_count = conn.execute(select(func.count()).select_from(skus)).scalar_one()

    if result.failed:
        logger.warning("%s canonical rows could not be inserted", result.failed)
    logger.info(
        "Replaced skus: %s inserted, %s duplicates removed, %s rows now",
        result.inserted,
        result.duplicates_removed,
        result.final_count,
    )
    return result


def _insert_rows(engine: Engine, batch: list[dict[str, Any]]) -> tuple[int, int]:
    inserted = failed = 0
    for row in batch:
        try:
            _insert_row(engine, row)
        except RowInsertError as exc:
            failed += 1
            logger.warning("Could not insert sku row %s", exc)
        else:
            inserted += 1
    return inserted, failed


def _insert_row(engine: Engine, row: dict[str, Any]) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(insert(skus), row)
    except SQLAlchemyError as exc:
        raise RowInsertError(f"{row.get('sku_id')}: {exc.__class__.__name__}") from exc
