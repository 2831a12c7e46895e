from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobwatch.models.execution import ExecutionStatus, TriggeredBy
from jobwatch.schemas.common import Pagination, ReadSource


class ExecutionCreate(BaseModel):
    """Request body for creating an execution.

    `job_id` and `userId` are checked by the service so that a missing value
    is reported as a domain validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: int | None = None
    user_id: int | None = Field(default=None, alias="userId")
    server_instance: str | None = Field(default=None, max_length=255)
    worker_node_id: str | None = Field(default=None, max_length=255)
    execution_context: dict[str, Any] | None = None
    triggered_by: TriggeredBy | None = None
    trace_id: str | None = Field(default=None, max_length=128)
    correlation_id: str | None = Field(default=None, max_length=128)


class ExecutionMetrics(BaseModel):
    """Partial metrics report; omitted fields are left as they are."""

    model_config = ConfigDict(extra="forbid")

    peak_memory_mb: float | None = Field(default=None, ge=0)
    peak_cpu_percent: float | None = Field(default=None, ge=0)
    rows_read: int | None = Field(default=None, ge=0)
    rows_processed: int | None = Field(default=None, ge=0)
    rows_inserted: int | None = Field(default=None, ge=0)
    rows_updated: int | None = Field(default=None, ge=0)
    rows_deleted: int | None = Field(default=None, ge=0)
    data_quality_score: float | None = Field(default=None, ge=0)
    steps_total: int | None = Field(default=None, ge=0)
    steps_completed: int | None = Field(default=None, ge=0)
    steps_failed: int | None = Field(default=None, ge=0)


class StartExecution(BaseModel):
    server_instance: str | None = Field(default=None, max_length=255)
    worker_node_id: str | None = Field(default=None, max_length=255)


class CompleteExecution(BaseModel):
    execution_status: ExecutionStatus = ExecutionStatus.SUCCESS
    duration_seconds: float | None = Field(default=None, ge=0)
    metrics: ExecutionMetrics | None = None


class FailExecution(BaseModel):
    error_message: str = Field(min_length=1)
    error_code: str | None = Field(default=None, max_length=100)
    error_step_id: int | None = None
    error_details: dict[str, Any] | None = None


class AbortExecution(BaseModel):
    reason: str | None = None


class UpdateStatus(BaseModel):
    execution_status: ExecutionStatus


class ExecutionUpdate(BaseModel):
    """Metadata corrections. Status changes still go through the transition table."""

    model_config = ConfigDict(extra="forbid")

    execution_status: ExecutionStatus | None = None
    error_message: str | None = None
    error_code: str | None = Field(default=None, max_length=100)
    error_step_id: int | None = None
    error_details: dict[str, Any] | None = None
    execution_context: dict[str, Any] | None = None
    server_instance: str | None = Field(default=None, max_length=255)
    worker_node_id: str | None = Field(default=None, max_length=255)
    trace_id: str | None = Field(default=None, max_length=128)
    correlation_id: str | None = Field(default=None, max_length=128)


class ExecutionResponse(BaseModel):
    """Full execution record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: int
    execution_status: ExecutionStatus
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: float | None
    triggered_by: TriggeredBy
    triggered_by_user_id: int | None
    server_instance: str | None
    worker_node_id: str | None
    trace_id: str | None
    correlation_id: str | None
    error_message: str | None
    error_code: str | None
    error_step_id: int | None
    error_details: dict[str, Any] | None
    execution_context: dict[str, Any] | None
    peak_memory_mb: float | None
    peak_cpu_percent: float | None
    rows_read: int | None
    rows_processed: int | None
    rows_inserted: int | None
    rows_updated: int | None
    rows_deleted: int | None
    data_quality_score: float | None
    steps_total: int | None
    steps_completed: int | None
    steps_failed: int | None
    sla_breached: bool
    execution_date: date
    archived: bool
    archived_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ExecutionEnvelope(BaseModel):
    """Single execution wrapped the way list responses are."""

    success: bool = True
    data: ExecutionResponse
    source: ReadSource = "database"


class ExecutionListResponse(BaseModel):
    success: bool = True
    data: list[ExecutionResponse]
    pagination: Pagination
    source: ReadSource = "database"


class SearchFilters(BaseModel):
    """AND-combined filters for the generic search."""

    model_config = ConfigDict(extra="forbid")

    job_id: int | None = None
    execution_status: ExecutionStatus | None = None
    started_at_min: datetime | None = None
    started_at_max: datetime | None = None
    triggered_by: TriggeredBy | None = None
    server_instance: str | None = None
    worker_node_id: str | None = None
    sla_breached: bool | None = None
    archived: bool | None = None


class SearchRequest(BaseModel):
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int | None = None
    offset: int = Field(default=0, ge=0)
    skipCache: bool = False


# --- Monitoring ---


class RunningDurationResponse(BaseModel):
    duration_seconds: float
    started_at: datetime | None


class TimeoutCheckResponse(BaseModel):
    is_timed_out: bool
    timeout_duration_minutes: float | None
    running_duration_minutes: float


class ProgressResponse(BaseModel):
    steps_total: int
    steps_completed: int
    steps_failed: int
    percentage_complete: float
    estimated_completion: datetime | None


class ResourceUsageResponse(BaseModel):
    peak_memory_mb: float | None
    peak_cpu_percent: float | None
    current_memory_mb: float | None
    current_cpu_percent: float | None


# --- Bulk ---
#
# HTTP callers always act for a user; the scheduler and CLI call the services
# directly with no principal.


class BulkArchiveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    execution_ids: list[str] = Field(alias="executionIds")
    user_id: int = Field(alias="userId")


class ArchiveOldRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    older_than_days: int = Field(alias="olderThanDays", ge=0)
    job_id: int | None = Field(default=None, alias="jobId")
    user_id: int = Field(alias="userId")


class RetryFailedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: int = Field(alias="jobId")
    days_back: int = Field(default=7, alias="daysBack", ge=1)
    user_id: int = Field(alias="userId")


class BulkArchiveResponse(BaseModel):
    success: bool = True
    archived: list[str]
    already_archived: list[str]
    not_terminal: list[str]
    not_found: list[str]
    conflicted: list[str] = []


class ArchiveOldResponse(BaseModel):
    success: bool = True
    archived_count: int
    cutoff: datetime


class RetrySignalOutcome(BaseModel):
    execution_id: str
    delivered: bool
    error: str | None = None


class RetryFailedResponse(BaseModel):
    success: bool = True
    job_id: int
    matched: int
    signalled: int
    failed: int
    outcomes: list[RetrySignalOutcome]


class PartitionCleanup(BaseModel):
    partition_name: str
    eligible: int
    deleted: int
    error: str | None = None


class CleanupResponse(BaseModel):
    success: bool = True
    dry_run: bool
    cutoff: datetime
    eligible: int
    deleted: int
    partitions: list[PartitionCleanup]


class PartitionInfo(BaseModel):
    partition_name: str
    execution_date_start: date
    execution_date_end: date
    row_count: int
    archived_count: int
    size_mb: float
