from datetime import datetime

import pytest
from sqlalchemy import select

from catalog_sync.db.tables import sync_runs
from catalog_sync.logic.runs import SyncLease
from catalog_sync.utils.dates import format_timestamp, minutes_ago


@pytest.fixture()
def lease(engine):
    return SyncLease(engine, stale_after_minutes=30)


def test_second_acquire_is_rejected(lease):
    first = lease.try_acquire("manual")
    assert first is not None
    assert lease.try_acquire("scheduled") is None
    assert lease.active_run().id == first.run_id


def test_stale_run_is_reaped_and_lease_granted(engine, lease, backdate_run):
    stale = lease.try_acquire("scheduled")
    backdate_run(stale.run_id, 31)

    assert lease.active_run() is None
    assert lease.reap_orphans() == 1
    fresh = lease.try_acquire("manual")
    assert fresh is not None

    with engine.connect() as conn:
        row = conn.execute(select(sync_runs).where(sync_runs.c.id == stale.run_id)).one()
    assert row.status == "failed"
    assert row.error_message.startswith(f"Orphaned: run {stale.run_id} started at")


def test_recent_run_is_not_reaped(lease, backdate_run):
    handle = lease.try_acquire("manual")
    backdate_run(handle.run_id, 5)
    assert lease.reap_orphans() == 0
    assert lease.try_acquire("manual") is None


def test_completion_is_idempotent(lease):
    handle = lease.try_acquire("manual", completion_mode="webhook")
    lease.attach_job(handle, "gid://shopify/BulkOperation/1")

    assert lease.complete_sync_run("gid://shopify/BulkOperation/1", "completed", record_count=12) is True
    assert lease.complete_sync_run("gid://shopify/BulkOperation/1", "completed", record_count=99) is False
    assert lease.complete_sync_run("gid://shopify/BulkOperation/1", "failed", error="late") is False

    run = lease.get_run("gid://shopify/BulkOperation/1")
    assert run.status == "completed"
    assert run.record_count == 12
    assert run.error_message is None
    assert run.completion_mode == "webhook"


def test_release_frees_the_lease(lease):
    handle = lease.try_acquire("manual")
    assert lease.release(handle, "failed", error="boom") is True
    assert lease.latest_run().error_message == "boom"
    assert lease.try_acquire("manual") is not None


def test_release_requires_terminal_status(lease):
    handle = lease.try_acquire("manual")
    with pytest.raises(ValueError):
        lease.release(handle, "started")


def test_unknown_trigger_kind(lease):
    with pytest.raises(ValueError):
        lease.try_acquire("nightly")


def test_cancel_started(lease):
    handle = lease.try_acquire("manual")
    assert lease.cancel_started() == [handle.run_id]
    assert lease.latest_run().status == "failed"
    assert lease.cancel_started() == []


def test_format_timestamp_is_utc_iso():
    assert format_timestamp(datetime(2025, 7, 15, 9, 30)) == "2025-07-15T09:30:00Z"
    assert format_timestamp(None) is None
    assert minutes_ago(30, now=datetime(2025, 7, 15, 9, 30)) == datetime(2025, 7, 15, 9, 0)
