"""Execution lifecycle, lookup and list endpoints."""

from collections.abc import Awaitable, Callable, Hashable
from datetime import date
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Body, Query, status

from jobwatch.config import JobsConfig
from jobwatch.dependencies import Cache, Config, Executions, Queries
from jobwatch.models.execution import ExecutionStatus, JobExecution
from jobwatch.schemas.common import Pagination
from jobwatch.schemas.execution import (
    AbortExecution,
    CompleteExecution,
    ExecutionCreate,
    ExecutionEnvelope,
    ExecutionListResponse,
    ExecutionMetrics,
    ExecutionResponse,
    ExecutionUpdate,
    FailExecution,
    ProgressResponse,
    ResourceUsageResponse,
    RunningDurationResponse,
    SearchRequest,
    StartExecution,
    TimeoutCheckResponse,
    UpdateStatus,
)
from jobwatch.services.queries import Page
from jobwatch.services.query_cache import QueryCache
from jobwatch.services.sla import effective_sla_breached

router = APIRouter()

SkipCache = Annotated[bool, Query(alias="skipCache", description="Read the store directly")]
IncludeArchived = Annotated[bool, Query(alias="includeArchived")]
Limit = Annotated[int | None, Query(description="Page size (default 50, max 100)")]
Offset = Annotated[int, Query(ge=0)]


def _record(execution: JobExecution, jobs: JobsConfig) -> dict[str, Any]:
    record = ExecutionResponse.model_validate(execution).model_dump()
    # running executions past their SLA read as breached before anything is stored
    record["sla_breached"] = effective_sla_breached(execution, jobs)
    return record


def _page_payload(page: Page, jobs: JobsConfig) -> dict[str, Any]:
    return {
        "data": [_record(execution, jobs) for execution in page.items],
        "pagination": Pagination(
            limit=page.limit,
            offset=page.offset,
            total=page.total,
            hasMore=page.has_more,
        ).model_dump(),
    }


def _rows_payload(rows: list[JobExecution], jobs: JobsConfig) -> dict[str, Any]:
    """Unpaginated list rendered with the same envelope as a page."""
    page = Page(items=rows, total=len(rows), limit=len(rows), offset=0)
    return _page_payload(page, jobs)


async def _cached_list(
    cache: QueryCache,
    key: Hashable,
    loader: Callable[[], Awaitable[Page]],
    skip_cache: bool,
    jobs: JobsConfig,
) -> ExecutionListResponse:
    async def load() -> dict[str, Any]:
        return _page_payload(await loader(), jobs)

    payload, source = await cache.get_or_load(key, load, skip_cache=skip_cache)
    return ExecutionListResponse(**payload, source=source)


async def _cached_one(
    cache: QueryCache,
    key: Hashable,
    loader: Callable[[], Awaitable[JobExecution]],
    skip_cache: bool,
    jobs: JobsConfig,
) -> ExecutionEnvelope:
    async def load() -> dict[str, Any]:
        return _record(await loader(), jobs)

    record, source = await cache.get_or_load(key, load, skip_cache=skip_cache)
    return ExecutionEnvelope(data=record, source=source)


def _envelope(execution: JobExecution, jobs: JobsConfig) -> ExecutionEnvelope:
    return ExecutionEnvelope(data=_record(execution, jobs), source="database")


# --- Create ---


@router.post("", response_model=ExecutionEnvelope, status_code=status.HTTP_201_CREATED)
async def create_execution(body: ExecutionCreate, executions: Executions) -> ExecutionEnvelope:
    """Record a new execution in `pending`."""
    execution = await executions.create(
        job_id=body.job_id,
        user_id=body.user_id,
        server_instance=body.server_instance,
        worker_node_id=body.worker_node_id,
        execution_context=body.execution_context,
        triggered_by=body.triggered_by,
        trace_id=body.trace_id,
        correlation_id=body.correlation_id,
    )
    return _envelope(execution, executions.config.jobs)


# --- Lists (declared before /{execution_id} so static paths win) ---


@router.get("/jobs/{job_id}", response_model=ExecutionListResponse)
async def list_by_job(
    job_id: int,
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("by_job", job_id, limit, offset, include_archived),
        lambda: queries.by_job(job_id, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/jobs/{job_id}/latest", response_model=ExecutionEnvelope)
async def latest_for_job(
    job_id: int,
    queries: Queries,
    cache: Cache,
    skip_cache: SkipCache = False,
) -> ExecutionEnvelope:
    return await _cached_one(
        cache,
        ("latest", job_id),
        lambda: queries.latest_for_job(job_id),
        skip_cache,
        queries.jobs,
    )


@router.get("/jobs/{job_id}/history", response_model=ExecutionListResponse)
async def job_history(
    job_id: int,
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    """Newest-first history, archived executions included."""

    async def load() -> dict[str, Any]:
        return _rows_payload(await queries.history(job_id, limit), queries.jobs)

    payload, source = await cache.get_or_load(("history", job_id, limit), load, skip_cache)
    return ExecutionListResponse(**payload, source=source)


@router.get("/status/{execution_status}", response_model=ExecutionListResponse)
async def list_by_status(
    execution_status: ExecutionStatus,
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("by_status", execution_status, limit, offset, include_archived),
        lambda: queries.by_status(execution_status, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/date-range", response_model=ExecutionListResponse)
async def list_by_date_range(
    queries: Queries,
    cache: Cache,
    start_date: Annotated[date, Query(alias="startDate")],
    end_date: Annotated[date, Query(alias="endDate")],
    field: Literal["started_at", "execution_date"] = Query(default="started_at"),
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    """Inclusive calendar-date range on started_at (default) or execution_date."""
    return await _cached_list(
        cache,
        ("date_range", start_date, end_date, field, limit, offset, include_archived),
        lambda: queries.by_date_range(
            start_date, end_date, field, limit, offset, include_archived
        ),
        skip_cache,
        queries.jobs,
    )


@router.get("/correlation/{correlation_id}", response_model=ExecutionListResponse)
async def list_by_correlation(
    correlation_id: str,
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("correlation", correlation_id, limit, offset, include_archived),
        lambda: queries.by_correlation(correlation_id, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/failed", response_model=ExecutionListResponse)
async def list_failed(
    queries: Queries,
    cache: Cache,
    days_back: int = Query(default=7, ge=1, alias="daysBack"),
    job_id: int | None = Query(default=None, alias="jobId"),
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("failed", days_back, job_id, limit, offset, include_archived),
        lambda: queries.failed(days_back, job_id, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/sla-breached", response_model=ExecutionListResponse)
async def list_sla_breached(
    queries: Queries,
    cache: Cache,
    days_back: int = Query(default=7, ge=1, alias="daysBack"),
    job_id: int | None = Query(default=None, alias="jobId"),
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("sla_breached", days_back, job_id, limit, offset, include_archived),
        lambda: queries.sla_breached(days_back, job_id, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/active", response_model=ExecutionListResponse)
async def list_active(
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("active", limit, offset, include_archived),
        lambda: queries.active(limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/queued", response_model=ExecutionListResponse)
async def list_queued(
    queries: Queries,
    cache: Cache,
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    return await _cached_list(
        cache,
        ("queued", limit, offset, include_archived),
        lambda: queries.queued(limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.get("/currently-running", response_model=ExecutionListResponse)
async def list_currently_running(
    queries: Queries,
    cache: Cache,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    """Every running execution, unpaginated."""

    async def load() -> dict[str, Any]:
        return _rows_payload(await queries.currently_running(), queries.jobs)

    payload, source = await cache.get_or_load(("currently_running",), load, skip_cache)
    return ExecutionListResponse(**payload, source=source)


@router.get("/long-running", response_model=ExecutionListResponse)
async def list_long_running(
    queries: Queries,
    cache: Cache,
    config: Config,
    threshold_minutes: float | None = Query(default=None, gt=0, alias="thresholdMinutes"),
    limit: Limit = None,
    offset: Offset = 0,
    include_archived: IncludeArchived = False,
    skip_cache: SkipCache = False,
) -> ExecutionListResponse:
    """Running longer than `thresholdMinutes` (configured default when omitted)."""
    if threshold_minutes is None:
        threshold_minutes = config.analytics.long_running_threshold_minutes
    return await _cached_list(
        cache,
        ("long_running", threshold_minutes, limit, offset, include_archived),
        lambda: queries.long_running(threshold_minutes, limit, offset, include_archived),
        skip_cache,
        queries.jobs,
    )


@router.post("/search", response_model=ExecutionListResponse)
async def search(body: SearchRequest, queries: Queries, cache: Cache) -> ExecutionListResponse:
    """AND-combined multi-field search."""
    return await _cached_list(
        cache,
        ("search", body.filters.model_dump_json(), body.limit, body.offset),
        lambda: queries.search(body.filters, body.limit, body.offset),
        body.skipCache,
        queries.jobs,
    )


# --- Single lookups ---


@router.get("/trace/{trace_id}", response_model=ExecutionEnvelope)
async def get_by_trace_id(
    trace_id: str,
    queries: Queries,
    cache: Cache,
    skip_cache: SkipCache = False,
) -> ExecutionEnvelope:
    return await _cached_one(
        cache,
        ("trace", trace_id),
        lambda: queries.by_trace_id(trace_id),
        skip_cache,
        queries.jobs,
    )


@router.get("/{execution_id}", response_model=ExecutionEnvelope)
async def get_execution(
    execution_id: str,
    queries: Queries,
    cache: Cache,
    skip_cache: SkipCache = False,
) -> ExecutionEnvelope:
    return await _cached_one(
        cache,
        ("by_id", execution_id),
        lambda: queries.by_id(execution_id),
        skip_cache,
        queries.jobs,
    )


# --- Monitoring (time dependent, never cached) ---


@router.get("/{execution_id}/running-duration", response_model=RunningDurationResponse)
async def running_duration(execution_id: str, executions: Executions) -> dict[str, Any]:
    return await executions.running_duration(execution_id)


@router.get("/{execution_id}/is-timed-out", response_model=TimeoutCheckResponse)
async def is_timed_out(
    execution_id: str,
    executions: Executions,
    timeout_minutes: float | None = Query(default=None, gt=0, alias="timeoutMinutes"),
) -> dict[str, Any]:
    """Timeout predicate; the job's configured timeout unless overridden."""
    return await executions.timeout_check(execution_id, timeout_minutes)


@router.get("/{execution_id}/progress", response_model=ProgressResponse)
async def progress(execution_id: str, executions: Executions) -> dict[str, Any]:
    return await executions.progress(execution_id)


@router.get("/{execution_id}/resource-usage", response_model=ResourceUsageResponse)
async def resource_usage(execution_id: str, executions: Executions) -> dict[str, Any]:
    return await executions.resource_usage(execution_id)


# --- Mutations ---


@router.put("/{execution_id}", response_model=ExecutionEnvelope)
async def update_execution(
    execution_id: str, body: ExecutionUpdate, executions: Executions
) -> ExecutionEnvelope:
    execution = await executions.update(execution_id, body.model_dump(exclude_unset=True))
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/status", response_model=ExecutionEnvelope)
async def update_status(
    execution_id: str, body: UpdateStatus, executions: Executions
) -> ExecutionEnvelope:
    execution = await executions.update_status(execution_id, body.execution_status)
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/start", response_model=ExecutionEnvelope)
async def start_execution(
    execution_id: str,
    executions: Executions,
    body: StartExecution | None = Body(default=None),
) -> ExecutionEnvelope:
    body = body or StartExecution()
    execution = await executions.mark_started(
        execution_id,
        server_instance=body.server_instance,
        worker_node_id=body.worker_node_id,
    )
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/complete", response_model=ExecutionEnvelope)
async def complete_execution(
    execution_id: str,
    executions: Executions,
    body: CompleteExecution | None = Body(default=None),
) -> ExecutionEnvelope:
    body = body or CompleteExecution()
    metrics = body.metrics.model_dump(exclude_none=True) if body.metrics else None
    execution = await executions.mark_completed(
        execution_id,
        execution_status=body.execution_status,
        duration_seconds=body.duration_seconds,
        metrics=metrics,
    )
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/fail", response_model=ExecutionEnvelope)
async def fail_execution(
    execution_id: str, body: FailExecution, executions: Executions
) -> ExecutionEnvelope:
    execution = await executions.mark_failed(
        execution_id,
        error_message=body.error_message,
        error_code=body.error_code,
        error_step_id=body.error_step_id,
        error_details=body.error_details,
    )
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/abort", response_model=ExecutionEnvelope)
async def abort_execution(
    execution_id: str,
    executions: Executions,
    body: AbortExecution | None = Body(default=None),
) -> ExecutionEnvelope:
    reason = body.reason if body else None
    execution = await executions.mark_aborted(execution_id, reason)
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/timeout", response_model=ExecutionEnvelope)
async def timeout_execution(execution_id: str, executions: Executions) -> ExecutionEnvelope:
    execution = await executions.mark_timeout(execution_id)
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/metrics", response_model=ExecutionEnvelope)
async def record_metrics(
    execution_id: str, body: ExecutionMetrics, executions: Executions
) -> ExecutionEnvelope:
    """Merge a partial metrics report; values never decrease."""
    execution = await executions.record_metrics(execution_id, body.model_dump(exclude_none=True))
    return _envelope(execution, executions.config.jobs)


@router.patch("/{execution_id}/archive", response_model=ExecutionEnvelope)
async def archive_execution(
    execution_id: str,
    executions: Executions,
    user_id: int = Body(alias="userId", embed=True),
) -> ExecutionEnvelope:
    """Idempotent; archiving twice keeps the first archived_at. Requires `userId`."""
    execution = await executions.archive(execution_id, user_id)
    return _envelope(execution, executions.config.jobs)
