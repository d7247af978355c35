"""Sync run bookkeeping and the single-run lease."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, exists, insert, literal, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import DateTime, Text

from catalog_sync.db.tables import sync_runs
from catalog_sync.errors import OrphanedRun
from catalog_sync.ingest.models import SyncRun
from catalog_sync.utils.dates import minutes_ago, utc_now

logger = logging.getLogger(__name__)

STARTED = "started"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})

TRIGGER_KINDS = frozenset({"manual", "scheduled"})
COMPLETION_MODES = frozenset({"poll", "webhook"})


@dataclass(slots=True, frozen=True)
class LeaseHandle:
    run_id: int
    token: str


def _to_run(row: Any) -> SyncRun:
    return SyncRun(
        id=row.id,
        trigger_kind=row.trigger_kind,
        completion_mode=row.completion_mode,
        external_job_id=row.external_job_id,
        status=row.status,
        record_count=row.record_count,
        error_message=row.error_message,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class SyncLease:
    """Cooperative lease over sync_runs: at most one run is ``started``.

    Acquisition is a single conditional insert, and the partial unique index
    on ``status = 'started'`` rejects a concurrent second writer.
    """

    def __init__(self, engine: Engine, *, stale_after_minutes: int = 30) -> None:
        self.engine = engine
        self.stale_after_minutes = stale_after_minutes

    def reap_orphans(self) -> int:
        """Fail runs stuck in ``started`` past the staleness threshold."""
        cutoff = minutes_ago(self.stale_after_minutes)
        reaped = 0
        with self.engine.begin() as conn:
            stale = conn.execute(
                select(sync_runs.c.id, sync_runs.c.started_at).where(
                    and_(sync_runs.c.status == STARTED, sync_runs.c.started_at < cutoff)
                )
            ).all()
            for run_id, started_at in stale:
                reaped += conn.execute(
                    update(sync_runs)
                    .where(and_(sync_runs.c.id == run_id, sync_runs.c.status == STARTED))
                    .values(status=FAILED, completed_at=utc_now(), error_message=str(OrphanedRun(run_id, started_at)))
                ).rowcount
        if reaped:
            logger.warning("Marked %s orphaned sync run(s) as failed", reaped)
        return reaped

    def active_run(self) -> SyncRun | None:
        cutoff = minutes_ago(self.stale_after_minutes)
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_runs)
                .where(and_(sync_runs.c.status == STARTED, sync_runs.c.started_at >= cutoff))
                .order_by(sync_runs.c.started_at.desc())
                .limit(1)
            ).first()
        return _to_run(row) if row else None

    def try_acquire(self, trigger_kind: str, *, completion_mode: str = "poll") -> LeaseHandle | None:
        if trigger_kind not in TRIGGER_KINDS:
            raise ValueError(f"Unknown trigger kind {trigger_kind!r}")
        if completion_mode not in COMPLETION_MODES:
            raise ValueError(f"Unknown completion mode {completion_mode!r}")
        token = uuid.uuid4().hex
        now = utc_now()
        candidate = select(
            literal(trigger_kind, Text),
            literal(completion_mode, Text),
            literal(STARTED, Text),
            literal(token, Text),
            literal(now, DateTime),
        ).where(~exists().where(sync_runs.c.status == STARTED))
        stmt = insert(sync_runs).from_select(
            ["trigger_kind", "completion_mode", "status", "lease_token", "started_at"], candidate
        )
        try:
            with self.engine.begin() as conn:
                inserted = conn.execute(stmt).rowcount
                run_id = conn.execute(
                    select(sync_runs.c.id).where(sync_runs.c.lease_token == token)
                ).scalar_one_or_none()
        except IntegrityError:
            logger.info("Lost the race for the sync lease")
            return None
        if not inserted or run_id is None:
            return None
        logger.info("Acquired sync lease: run %s (%s, %s)", run_id, trigger_kind, completion_mode)
        return LeaseHandle(run_id=run_id, token=token)

    def attach_job(self, handle: LeaseHandle, external_job_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(sync_runs)
                .where(and_(sync_runs.c.id == handle.run_id, sync_runs.c.lease_token == handle.token))
                .values(external_job_id=external_job_id)
            )

    def release(
        self,
        handle: LeaseHandle,
        status: str,
        record_count: int | None = None,
        error: str | None = None,
    ) -> bool:
        return self._finish(
            and_(sync_runs.c.id == handle.run_id, sync_runs.c.lease_token == handle.token),
            status,
            record_count,
            error,
        )

    def complete_sync_run(
        self,
        external_job_id: str,
        status: str,
        record_count: int | None = None,
        error: str | None = None,
    ) -> bool:
        return self._finish(sync_runs.c.external_job_id == external_job_id, status, record_count, error)

    def _finish(self, where, status: str, record_count: int | None, error: str | None) -> bool:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Runs can only finish as {sorted(TERMINAL_STATUSES)}, not {status!r}")
        with self.engine.begin() as conn:
            updated = conn.execute(
                update(sync_runs)
                .where(and_(where, sync_runs.c.status == STARTED))
                .values(status=status, completed_at=utc_now(), record_count=record_count, error_message=error)
            ).rowcount
            if updated:
                return True
            current = conn.execute(select(sync_runs.c.id, sync_runs.c.status).where(where)).first()
        if current is None:
            logger.warning("No sync run matches the completion request (%s)", status)
        elif current.status != status:
            logger.warning("Run %s is already %s; ignoring transition to %s", current.id, current.status, status)
        return False

    def cancel_started(self, reason: str = "Manually cancelled by admin") -> list[int]:
        with self.engine.begin() as conn:
            run_ids = list(conn.execute(select(sync_runs.c.id).where(sync_runs.c.status == STARTED)).scalars())
            if run_ids:
                conn.execute(
                    update(sync_runs)
                    .where(and_(sync_runs.c.id.in_(run_ids), sync_runs.c.status == STARTED))
                    .values(status=FAILED, completed_at=utc_now(), error_message=reason)
                )
        return run_ids

    def get_run(self, external_job_id: str) -> SyncRun | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_runs)
                .where(sync_runs.c.external_job_id == external_job_id)
                .order_by(sync_runs.c.id.desc())
                .limit(1)
            ).first()
        return _to_run(row) if row else None

    def latest_run(self) -> SyncRun | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(sync_runs).order_by(sync_runs.c.started_at.desc(), sync_runs.c.id.desc()).limit(1)).first()
        return _to_run(row) if row else None
