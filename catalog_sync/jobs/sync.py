"""Catalog sync orchestration."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, TypeVar

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.errors import EmptyCatalog, JobFailed, NotConfigured, SyncError
from catalog_sync.ingest.models import IngestResult, ReplaceResult, TransformResult
from catalog_sync.ingest.shopify import BulkResult, ShopifyBulkClient
from catalog_sync.ingest.stream import StreamIngestor, clear_staging
from catalog_sync.logic.replace import replace_catalog
from catalog_sync.logic.runs import COMPLETED, FAILED, LeaseHandle, SyncLease
from catalog_sync.logic.transform import transform_catalog
from catalog_sync.settings import SyncSettings
from catalog_sync.utils.dates import format_timestamp
from catalog_sync.utils.log_config import configure_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (status, record_count, error) -> whether the run left "started"
FinishRun = Callable[[str, int | None, str | None], bool]


@dataclass(slots=True)
class SyncOutcome:
    status: str
    message: str
    run_id: int | None = None
    external_job_id: str | None = None
    ingest: dict[str, int] | None = None
    transform: dict[str, Any] | None = None
    replace: dict[str, Any] | None = None
    object_count: int | None = None

    @property
    def success(self) -> bool:
        return self.status in {"started", "completed", "already_processed", "ignored"}

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, **asdict(self)}


@dataclass(slots=True)
class _StageResults:
    ingest: IngestResult = field(default_factory=IngestResult)
    transform: TransformResult | None = None
    replace: ReplaceResult | None = None


async def _in_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, *args, **kwargs))


class CatalogSync:
    def __init__(self, engine: Engine, client: ShopifyBulkClient, settings: SyncSettings) -> None:
        self.engine = engine
        self.client = client
        self.settings = settings
        self.lease = SyncLease(engine, stale_after_minutes=settings.stale_after_minutes)

    async def run(self, trigger_kind: str = "manual") -> SyncOutcome:
        """Start a bulk export and see it through to the replaced skus table."""
        handle, outcome = await self._start(trigger_kind, completion_mode="poll")
        if handle is None or outcome.external_job_id is None:
            return outcome
        job_id = outcome.external_job_id
        finish = functools.partial(self.lease.release, handle)
        try:
            result = await self.client.await_completion(job_id)
        except SyncError as exc:
            return await self._fail(handle.run_id, job_id, exc, finish)
        except Exception as exc:
            await self._fail(handle.run_id, job_id, exc, finish)
            raise
        return await self._process(handle.run_id, job_id, result, finish)

    async def start(self, trigger_kind: str = "manual") -> SyncOutcome:
        """Start a bulk export whose completion arrives through the webhook."""
        _, outcome = await self._start(trigger_kind, completion_mode="webhook")
        return outcome

    async def handle_bulk_finish(
        self,
        job_id: str,
        status: str,
        *,
        url: str | None = None,
        error_code: str | None = None,
        object_count: int | None = None,
    ) -> SyncOutcome:
        run = await _in_thread(self.lease.get_run, job_id)
        if run is None:
            logger.warning("No sync run found for bulk operation %s", job_id)
            return SyncOutcome(status="no_matching_run", message="No sync run record found for this operation", external_job_id=job_id)
        if run.status == COMPLETED:
            return SyncOutcome(
                status="already_processed",
                message="Operation already processed",
                run_id=run.id,
                external_job_id=job_id,
            )
        if run.completion_mode != "webhook" or run.status != "started":
            return SyncOutcome(
                status="ignored",
                message=f"Run {run.id} is {run.status} and completed by {run.completion_mode}",
                run_id=run.id,
                external_job_id=job_id,
            )
        finish = functools.partial(self.lease.complete_sync_run, job_id)
        status = status.lower()
        if status != "completed":
            error = JobFailed(job_id, error_code or status.upper())
            return await self._fail(run.id, job_id, error, finish)
        if not url:
            try:
                operation = await self.client.get_operation(job_id)
            except SyncError as exc:
                return await self._fail(run.id, job_id, exc, finish)
            url = operation.url if operation else None
            object_count = operation.object_count if operation else object_count
        result = BulkResult(url=url, object_count=object_count or 0)
        return await self._process(run.id, job_id, result, finish)

    async def _start(self, trigger_kind: str, *, completion_mode: str) -> tuple[LeaseHandle | None, SyncOutcome]:
        await _in_thread(self.lease.reap_orphans)

        active = await _in_thread(self.lease.active_run)
        if active is not None:
            message = f"A sync is already in progress (run {active.id} started at {format_timestamp(active.started_at)})"
            logger.info("Skipping %s sync: %s", trigger_kind, message)
            return None, SyncOutcome(status="skipped", message=message, run_id=active.id, external_job_id=active.external_job_id)

        if self.settings.check_platform:
            busy = await self._platform_busy()
            if busy:
                return None, SyncOutcome(status="skipped", message=busy)

        handle = await _in_thread(self.lease.try_acquire, trigger_kind, completion_mode=completion_mode)
        if handle is None:
            return None, SyncOutcome(status="skipped", message="Another sync acquired the lease first")

        try:
            job_id = await self.client.submit()
        except SyncError as exc:
            logger.warning("Could not start bulk operation: %s", exc)
            await _in_thread(self.lease.release, handle, FAILED, None, str(exc))
            return None, SyncOutcome(status="failed", message=str(exc), run_id=handle.run_id)
        except Exception as exc:
            await _in_thread(self.lease.release, handle, FAILED, None, str(exc) or exc.__class__.__name__)
            raise

        await _in_thread(self.lease.attach_job, handle, job_id)
        return handle, SyncOutcome(
            status="started",
            message="Bulk operation started",
            run_id=handle.run_id,
            external_job_id=job_id,
        )

    async def _platform_busy(self) -> str | None:
        try:
            operation = await self.client.current_operation()
        except SyncError as exc:
            logger.warning("Could not check Shopify bulk operation status: %s", exc)
            return None
        if operation is not None and operation.is_running:
            return f"Shopify bulk operation is {operation.status.lower()}"
        return None

    async def _process(self, run_id: int, job_id: str, result: BulkResult, finish: FinishRun) -> SyncOutcome:
        stages = _StageResults()
        try:
            await self._ingest(result, stages)
            stages.transform = await _in_thread(transform_catalog, self.engine, self.settings)
            if not stages.transform.rows:
                raise EmptyCatalog(
                    f"Transform produced no rows from {stages.transform.attempted} raw variants; skus left unchanged"
                )
            stages.replace = await _in_thread(
                replace_catalog,
                self.engine,
                stages.transform.rows,
                batch_size=self.settings.batch_size,
                backup=self.settings.backup_skus,
            )
        except SyncError as exc:
            outcome = await self._fail(run_id, job_id, exc, finish, record_count=stages.ingest.processed)
            _attach_stages(outcome, stages)
            return outcome
        except Exception as exc:
            await self._fail(run_id, job_id, exc, finish, record_count=stages.ingest.processed)
            raise

        await _in_thread(finish, COMPLETED, stages.ingest.processed, None)
        logger.info("Sync run %s complete: %s variants ingested", run_id, stages.ingest.processed)
        outcome = SyncOutcome(
            status="completed",
            message="Catalog synchronized",
            run_id=run_id,
            external_job_id=job_id,
            object_count=result.object_count,
        )
        _attach_stages(outcome, stages)
        return outcome

    async def _ingest(self, result: BulkResult, stages: _StageResults) -> None:
        await _in_thread(clear_staging, self.engine)
        ingestor = StreamIngestor(
            self.engine,
            batch_size=self.settings.batch_size,
            progress_every=self.settings.progress_every,
        )
        async with self.client.download(result.url) as lines:
            stages.ingest = await ingestor.process(lines, _log_progress)

    async def _fail(
        self,
        run_id: int,
        job_id: str | None,
        exc: BaseException,
        finish: FinishRun,
        *,
        record_count: int | None = None,
    ) -> SyncOutcome:
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, SyncError):
            logger.warning("Sync run %s failed: %s: %s", run_id, exc.__class__.__name__, message)
        else:
            logger.exception("Sync run %s failed unexpectedly", run_id)
        await _in_thread(finish, FAILED, record_count, message)
        return SyncOutcome(status="failed", message=message, run_id=run_id, external_job_id=job_id)


def _attach_stages(outcome: SyncOutcome, stages: _StageResults) -> None:
    outcome.ingest = asdict(stages.ingest)
    if stages.transform is not None:
        outcome.transform = {
            "attempted": stages.transform.attempted,
            "matched": stages.transform.matched,
            "skipped": stages.transform.skipped,
            "skip_reasons": stages.transform.skip_reasons,
        }
    if stages.replace is not None:
        outcome.replace = asdict(stages.replace)


def _log_progress(count: int) -> None:
    logger.info("Processed %s variants...", count)


async def run_catalog_sync(trigger_kind: str = "scheduled", *, engine: Engine | None = None) -> SyncOutcome:
    load_dotenv()
    settings = SyncSettings.from_env()
    engine = engine or create_engine_from_env()
    try:
        client = ShopifyBulkClient(settings)
    except NotConfigured as exc:
        logger.error("Catalog sync not started: %s", exc)
        return SyncOutcome(status="failed", message=str(exc))
    try:
        outcome = await CatalogSync(engine, client, settings).run(trigger_kind)
    finally:
        await client.close()
    logger.info("Catalog sync finished: %s (%s)", outcome.status, outcome.message)
    return outcome


if __name__ == "__main__":
    configure_logging()
    asyncio.run(run_catalog_sync("manual"))
