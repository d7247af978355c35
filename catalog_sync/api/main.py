"""FastAPI application for triggering and completing catalog syncs."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.engine import Engine

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.errors import NotConfigured, SyncError
from catalog_sync.ingest.models import SyncRun
from catalog_sync.ingest.shopify import ShopifyBulkClient
from catalog_sync.jobs.sync import CatalogSync, SyncOutcome
from catalog_sync.logic.runs import SyncLease
from catalog_sync.settings import SyncSettings

logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Sync API")


class SyncResponse(BaseModel):
    success: bool
    status: str
    message: str
    run_id: int | None = None
    external_job_id: str | None = None
    object_count: int | None = None
    ingest: dict[str, int] | None = None
    transform: dict[str, Any] | None = None
    replace: dict[str, Any] | None = None


class RunModel(BaseModel):
    id: int
    trigger_kind: str
    completion_mode: str
    external_job_id: str | None = None
    status: str
    record_count: int | None = None
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class StatusResponse(BaseModel):
    in_progress: bool
    active: RunModel | None = None
    latest: RunModel | None = None


class CancelResponse(BaseModel):
    cancelled_runs: list[int]
    bulk_operation_status: str | None = None
    message: str


class BulkFinishPayload(BaseModel):
    admin_graphql_api_id: str
    status: str
    error_code: str | None = None
    type: str | None = None


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine_from_env()


def get_settings() -> SyncSettings:
    return SyncSettings.from_env()


async def get_bulk_client(settings: SyncSettings = Depends(get_settings)) -> AsyncIterator[ShopifyBulkClient | None]:
    try:
        client = ShopifyBulkClient(settings)
    except NotConfigured as exc:
        logger.warning("Shopify client unavailable: %s", exc)
        yield None
        return
    try:
        yield client
    finally:
        await client.close()


def authorize(request: Request, settings: SyncSettings) -> None:
    """Production callers need the cron bearer token or the scheduler header."""
    if not settings.is_production:
        return
    if request.headers.get(settings.scheduler_header) == "1":
        return
    auth = request.headers.get("authorization", "")
    if settings.cron_secret and hmac.compare_digest(auth, f"Bearer {settings.cron_secret}"):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


def verify_webhook(body: bytes, signature: str | None, secret: str) -> bool:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return bool(signature) and hmac.compare_digest(expected, signature or "")


def _sync_response(outcome: SyncOutcome, status_code: int | None = None) -> JSONResponse:
    if status_code is None:
        status_code = 500 if outcome.status == "failed" else 200
    body = SyncResponse(**outcome.as_dict())
    return JSONResponse(body.model_dump(mode="json"), status_code=status_code)


def _run_model(run: SyncRun | None) -> RunModel | None:
    return RunModel(**asdict(run)) if run else None


async def _trigger(
    request: Request,
    trigger_kind: str,
    wait: bool,
    engine: Engine,
    settings: SyncSettings,
    client: ShopifyBulkClient | None,
) -> JSONResponse:
    authorize(request, settings)
    if client is None:
        outcome = SyncOutcome(status="failed", message="Shopify credentials are not configured")
        return _sync_response(outcome, status_code=400)
    sync = CatalogSync(engine, client, settings)
    if wait:
        outcome = await sync.run(trigger_kind)
    else:
        outcome = await sync.start(trigger_kind)
    logger.info("%s sync trigger: %s (%s)", trigger_kind, outcome.status, outcome.message)
    return _sync_response(outcome)


@app.post("/sync/trigger", response_model=SyncResponse)
async def trigger_manual(
    request: Request,
    wait: bool = Query(True),
    engine: Engine = Depends(get_engine),
    settings: SyncSettings = Depends(get_settings),
    client: ShopifyBulkClient | None = Depends(get_bulk_client),
) -> JSONResponse:
    return await _trigger(request, "manual", wait, engine, settings, client)


@app.get("/sync/trigger", response_model=SyncResponse)
async def trigger_scheduled(
    request: Request,
    wait: bool = Query(True),
    engine: Engine = Depends(get_engine),
    settings: SyncSettings = Depends(get_settings),
    client: ShopifyBulkClient | None = Depends(get_bulk_client),
) -> JSONResponse:
    return await _trigger(request, "scheduled", wait, engine, settings, client)


@app.get("/sync/status", response_model=StatusResponse)
async def sync_status(
    engine: Engine = Depends(get_engine),
    settings: SyncSettings = Depends(get_settings),
) -> StatusResponse:
    lease = SyncLease(engine, stale_after_minutes=settings.stale_after_minutes)
    active = lease.active_run()
    return StatusResponse(in_progress=active is not None, active=_run_model(active), latest=_run_model(lease.latest_run()))


@app.delete("/sync", response_model=CancelResponse)
async def cancel_sync(
    request: Request,
    engine: Engine = Depends(get_engine),
    settings: SyncSettings = Depends(get_settings),
    client: ShopifyBulkClient | None = Depends(get_bulk_client),
) -> CancelResponse:
    authorize(request, settings)
    lease = SyncLease(engine, stale_after_minutes=settings.stale_after_minutes)
    run_ids = lease.cancel_started()
    operation_status = None
    if client is not None:
        try:
            operation = await client.cancel()
        except SyncError as exc:
            logger.warning("Could not cancel Shopify bulk operation: %s", exc)
        else:
            operation_status = operation.status if operation else None
    logger.info("Cancelled %s stuck sync run(s)", len(run_ids))
    return CancelResponse(
        cancelled_runs=run_ids,
        bulk_operation_status=operation_status,
        message=f"Cancelled {len(run_ids)} stuck sync run(s)",
    )


@app.post("/webhooks/bulk-complete", response_model=SyncResponse)
async def bulk_complete_webhook(
    request: Request,
    engine: Engine = Depends(get_engine),
    settings: SyncSettings = Depends(get_settings),
    client: ShopifyBulkClient | None = Depends(get_bulk_client),
) -> JSONResponse:
    body = await request.body()
    if settings.is_production and settings.webhook_secret:
        if not verify_webhook(body, request.headers.get("x-shopify-hmac-sha256"), settings.webhook_secret):
            logger.warning("Rejected bulk-complete webhook with an invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        payload = BulkFinishPayload.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from exc
    if client is None:
        outcome = SyncOutcome(status="failed", message="Shopify credentials are not configured")
        return _sync_response(outcome, status_code=400)

    logger.info("Bulk operation %s finished: %s", payload.admin_graphql_api_id, payload.status)
    outcome = await CatalogSync(engine, client, settings).handle_bulk_finish(
        payload.admin_graphql_api_id,
        payload.status,
        error_code=payload.error_code,
    )
    # Shopify redelivers on non-2xx; failures are recorded on the run instead.
    return _sync_response(outcome, status_code=200)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
