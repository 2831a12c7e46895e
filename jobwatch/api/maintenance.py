"""Bulk archive, retry and retention endpoints.

These can touch many rows, so they are rate limited per client.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Query, Request

from jobwatch.api.executions import SkipCache, _page_payload
from jobwatch.core.rate_limit import bulk_limit, limiter
from jobwatch.dependencies import BulkRetry, Cache, Retention
from jobwatch.schemas.execution import (
    ArchiveOldRequest,
    ArchiveOldResponse,
    BulkArchiveRequest,
    BulkArchiveResponse,
    CleanupResponse,
    ExecutionListResponse,
    PartitionInfo,
    RetryFailedRequest,
    RetryFailedResponse,
)

router = APIRouter()

RetentionDays = Annotated[int, Query(ge=1, alias="retentionDays")]


@router.post("/bulk-archive", response_model=BulkArchiveResponse)
@limiter.limit(bulk_limit)
async def bulk_archive(
    request: Request, body: BulkArchiveRequest, retention: Retention
) -> BulkArchiveResponse:
    """Archive each id; unknown, unfinished and already archived ids are reported."""
    outcome = await retention.bulk_archive(body.execution_ids, body.user_id)
    return BulkArchiveResponse(**outcome)


@router.post("/archive-old", response_model=ArchiveOldResponse)
@limiter.limit(bulk_limit)
async def archive_old(
    request: Request, body: ArchiveOldRequest, retention: Retention
) -> ArchiveOldResponse:
    archived, cutoff = await retention.archive_old(body.older_than_days, body.job_id, body.user_id)
    return ArchiveOldResponse(archived_count=archived, cutoff=cutoff)


@router.post("/retry-failed", response_model=RetryFailedResponse)
@limiter.limit(bulk_limit)
async def retry_failed(
    request: Request, body: RetryFailedRequest, bulk_retry: BulkRetry
) -> RetryFailedResponse:
    """Signal the scheduler to rerun failed executions; the failed rows are not modified."""
    result = await bulk_retry.retry_failed(body.job_id, body.days_back, body.user_id)
    return RetryFailedResponse(**result)


@router.delete("/cleanup-archived", response_model=CleanupResponse)
@limiter.limit(bulk_limit)
async def cleanup_archived(
    request: Request,
    retention: Retention,
    older_than_days: Annotated[int, Query(ge=1, alias="olderThanDays")] = 365,
    dry_run: Annotated[bool, Query(alias="dryRun")] = False,
) -> CleanupResponse:
    """Permanently delete archived executions past retention. Never touches unarchived rows."""
    result = await retention.cleanup_archived(older_than_days, dry_run=dry_run)
    return CleanupResponse(**result)


@router.get("/partitions", response_model=list[PartitionInfo])
async def partitions(retention: Retention) -> list[dict[str, Any]]:
    return await retention.partitions()


@router.get("/pending-cleanup", response_model=ExecutionListResponse)
async def pending_cleanup(
    retention: Retention,
    cache: Cache,
    retention_days: RetentionDays = 365,
    limit: Annotated[int | None, Query()] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    """Dry-run listing of what cleanup would delete."""

    async def load() -> dict[str, Any]:
        page = await retention.pending_cleanup(retention_days, limit, offset)
        return _page_payload(page, retention.config.jobs)

    payload, source = await cache.get_or_load(
        ("pending_cleanup", retention_days, limit, offset), load, skip_cache
    )
    return ExecutionListResponse(**payload, source=source)
