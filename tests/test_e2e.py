import pytest
from sqlalchemy import insert, select

from catalog_sync.db.tables import raw_skus, skus, sync_runs
from catalog_sync.ingest.shopify import ShopifyBulkClient
from catalog_sync.jobs import sync as sync_job
from catalog_sync.jobs.sync import CatalogSync
from catalog_sync.logic.runs import SyncLease


async def run_sync(engine, settings):
    client = ShopifyBulkClient(settings, retry_attempts=1)
    try:
        return await CatalogSync(engine, client, settings).run("manual")
    finally:
        await client.close()


def stored_skus(engine):
    with engine.connect() as conn:
        return {
            row.sku_id: row
            for row in conn.execute(select(skus).order_by(skus.c.id))
        }


@pytest.mark.asyncio
async def test_full_sync(seeded_engine, settings, shopify):
    with seeded_engine.begin() as conn:
        conn.execute(insert(skus), [{"sku_id": "ABC-12", "category_id": 102, "display_priority": 7}])

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "completed", outcome.message
    assert outcome.success
    assert outcome.ingest == {"processed": 5, "failed": 1, "ignored": 0, "inventory_levels": 1}
    assert outcome.transform["skip_reasons"] == {"excluded_tag": 1, "missing_sku": 1}
    assert outcome.replace["final_count"] == 3
    assert outcome.replace["backup_table"].startswith("skus_backup_")

    rows = stored_skus(seeded_engine)
    assert set(rows) == {"ABC-12", "PB-4", "JUL-1"}
    tee = rows["ABC-12"]
    assert (tee.category_id, tee.show_in_preorder, tee.sku_color, tee.display_priority) == (102, True, "Red, Blue", 7)
    assert rows["PB-4"].size == "PP-44"
    assert (rows["JUL-1"].category_id, rows["JUL-1"].display_priority) == (106, 10000)

    with seeded_engine.connect() as conn:
        run = conn.execute(select(sync_runs)).one()
    assert run.status == "completed"
    assert run.record_count == 5
    assert run.external_job_id == shopify.job_id
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_failed_job_is_recorded(seeded_engine, settings, shopify):
    with seeded_engine.begin() as conn:
        conn.execute(insert(skus), [{"sku_id": "KEEP-1", "category_id": 101, "display_priority": 1}])
    shopify.polls = [{"status": "RUNNING"}, {"status": "RUNNING"}, {"status": "FAILED", "errorCode": "INTERNAL"}]

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "failed"
    assert outcome.message == "INTERNAL"
    run = SyncLease(seeded_engine).latest_run()
    assert (run.status, run.error_message) == ("failed", "INTERNAL")
    assert set(stored_skus(seeded_engine)) == {"KEEP-1"}


@pytest.mark.asyncio
async def test_empty_transform_keeps_catalog(seeded_engine, settings, shopify):
    with seeded_engine.begin() as conn:
        conn.execute(insert(skus), [{"sku_id": "KEEP-1", "category_id": 101, "display_priority": 1}])
    shopify.result_body = '{"id":"gid://shopify/ProductVariant/1","sku":"X-1","product":{"mfOrderEntryCollection":{"value":"Spring 2031"}}}\n'

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "failed"
    assert "no rows" in outcome.message
    assert set(stored_skus(seeded_engine)) == {"KEEP-1"}


@pytest.mark.asyncio
async def test_concurrent_run_is_skipped(seeded_engine, settings, shopify):
    held = SyncLease(seeded_engine).try_acquire("scheduled")

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "skipped"
    assert outcome.run_id == held.run_id
    assert shopify.count("bulkOperationRunQuery") == 0


@pytest.mark.asyncio
async def test_platform_busy_is_skipped(seeded_engine, settings, shopify):
    settings.check_platform = True
    shopify.current = {"id": "gid://shopify/BulkOperation/1", "status": "RUNNING"}

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "skipped"
    assert SyncLease(seeded_engine).latest_run() is None


@pytest.mark.asyncio
async def test_submission_rejected_releases_lease(seeded_engine, settings, shopify):
    shopify.submit_errors = [{"field": None, "message": "Throttled"}]

    outcome = await run_sync(seeded_engine, settings)

    assert outcome.status == "failed"
    lease = SyncLease(seeded_engine)
    assert lease.latest_run().status == "failed"
    assert lease.try_acquire("manual") is not None


@pytest.mark.asyncio
async def test_webhook_completion(seeded_engine, settings, shopify):
    client = ShopifyBulkClient(settings, retry_attempts=1)
    sync = CatalogSync(seeded_engine, client, settings)
    try:
        started = await sync.start("manual")
        assert started.status == "started"
        assert shopify.count("node(") == 0

        finished = await sync.handle_bulk_finish(shopify.job_id, "completed")
        again = await sync.handle_bulk_finish(shopify.job_id, "completed")
        unknown = await sync.handle_bulk_finish("gid://shopify/BulkOperation/999", "completed")
    finally:
        await client.close()

    assert finished.status == "completed"
    assert finished.object_count == 7
    assert again.status == "already_processed"
    assert unknown.status == "no_matching_run"
    assert set(stored_skus(seeded_engine)) == {"ABC-12", "PB-4", "JUL-1"}


@pytest.mark.asyncio
async def test_webhook_ignores_polling_runs(seeded_engine, settings, shopify):
    lease = SyncLease(seeded_engine)
    handle = lease.try_acquire("manual")
    lease.attach_job(handle, shopify.job_id)
    client = ShopifyBulkClient(settings, retry_attempts=1)
    try:
        outcome = await CatalogSync(seeded_engine, client, settings).handle_bulk_finish(shopify.job_id, "completed")
    finally:
        await client.close()
    assert outcome.status == "ignored"
    assert lease.active_run().id == handle.run_id


@pytest.mark.asyncio
async def test_run_catalog_sync_without_credentials(monkeypatch, engine):
    monkeypatch.delenv("SHOPIFY_STORE_DOMAIN", raising=False)
    monkeypatch.delenv("SHOPIFY_ACCESS_TOKEN", raising=False)
    monkeypatch.setattr(sync_job, "load_dotenv", lambda: None)

    outcome = await sync_job.run_catalog_sync("scheduled", engine=engine)

    assert outcome.status == "failed"
    assert SyncLease(engine).latest_run() is None


@pytest.mark.asyncio
async def test_staging_is_replaced_each_run(seeded_engine, settings, shopify):
    with seeded_engine.begin() as conn:
        conn.execute(insert(raw_skus), [{"shopify_gid": "gid://shopify/ProductVariant/1", "sku_id": "GONE-1", "tags": "Fall 2025"}])

    await run_sync(seeded_engine, settings)

    with seeded_engine.connect() as conn:
        staged = set(conn.execute(select(raw_skus.c.sku_id)).scalars())
    assert "GONE-1" not in staged


@pytest.mark.asyncio
async def test_webhook_closes_run_by_job_id(seeded_engine, settings, shopify):
    client = ShopifyBulkClient(settings, retry_attempts=1)
    sync = CatalogSync(seeded_engine, client, settings)
    calls = []
    complete = sync.lease.complete_sync_run

    def recording_complete(job_id, status, record_count=None, error=None):
        calls.append((job_id, status))
        return complete(job_id, status, record_count, error)

    sync.lease.complete_sync_run = recording_complete
    try:
        await sync.start("manual")
        outcome = await sync.handle_bulk_finish(shopify.job_id, "failed", error_code="TIMEOUT")
    finally:
        await client.close()

    assert outcome.status == "failed"
    assert calls == [(shopify.job_id, "failed")]
    assert sync.lease.get_run(shopify.job_id).error_message == "TIMEOUT"
