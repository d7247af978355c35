from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from catalog_sync.db.migrate import run_migrations


def test_run_migrations_is_repeatable():
    engine = create_engine("sqlite:///:memory:", future=True, poolclass=StaticPool)
    run_migrations(engine)
    run_migrations(engine)
    inspector = inspect(engine)
    assert {"sku_categories", "pp_sizes", "raw_skus", "raw_inventory_levels", "skus", "sync_runs"} <= set(
        inspector.get_table_names()
    )
    index_names = {index["name"] for index in inspector.get_indexes("sync_runs")}
    assert "uq_sync_runs_single_started" in index_names
    engine.dispose()
