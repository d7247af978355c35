"""Error taxonomy for the catalog sync pipeline."""

from __future__ import annotations

from datetime import datetime


class SyncError(Exception):
    """Fatal error that aborts a sync run."""


class NotConfigured(SyncError):
    pass


class SubmissionRejected(SyncError):
    """Shopify refused the bulk query (GraphQL errors or userErrors)."""


class PlatformRequestError(SyncError):
    """The GraphQL endpoint could not be reached or answered with an HTTP error."""


class PollTimeout(SyncError):
    def __init__(self, job_id: str, max_wait: float) -> None:
        super().__init__(f"Bulk operation {job_id} did not finish within {max_wait:g}s")
        self.job_id = job_id
        self.max_wait = max_wait


class JobFailed(SyncError):
    def __init__(self, job_id: str, error_code: str | None) -> None:
        self.job_id = job_id
        self.error_code = error_code or "UNKNOWN"
        super().__init__(self.error_code)


class JobCanceled(SyncError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Bulk operation {job_id} was canceled")
        self.job_id = job_id


class DownloadError(SyncError):
    pass


class EmptyCatalog(SyncError):
    """The transform matched no rows; the canonical table is left untouched."""


class MalformedLine(ValueError):
    pass


class UnmatchedCategory(LookupError):
    def __init__(self, tags: str) -> None:
        super().__init__(f"No category matches tags {tags!r}")
        self.tags = tags


class RowInsertError(Exception):
    pass


class OrphanedRun(Exception):
    def __init__(self, run_id: int, started_at: datetime) -> None:
        super().__init__(
            f"Orphaned: run {run_id} started at {started_at:%Y-%m-%d %H:%M:%S} never finished"
        )
        self.run_id = run_id
        self.started_at = started_at
