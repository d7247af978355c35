"""Celery configuration for the scheduled catalog sync."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from catalog_sync.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
schedule_hours = int(os.environ.get("SYNC_SCHEDULE_HOURS", "6"))

celery_app = Celery("catalog_sync", broker=broker_url, backend=backend_url, include=["catalog_sync.jobs.sync"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "catalog-sync": {
        "task": "catalog_sync.jobs.sync.run_catalog_sync",
        "schedule": crontab(minute=0, hour=f"*/{schedule_hours}"),
    },
}


@celery_app.task(name="catalog_sync.jobs.sync.run_catalog_sync")
def run_catalog_sync_task(trigger_kind: str = "scheduled") -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from catalog_sync.jobs.sync import run_catalog_sync
    from catalog_sync.utils.log_config import configure_logging

    configure_logging()
    outcome = asyncio.run(run_catalog_sync(trigger_kind))
    return outcome.as_dict()
