"""Job execution model and its status state machine."""

import enum
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Date, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobwatch.models.base import Base, TimestampMixin


class ExecutionStatus(str, enum.Enum):
    """Lifecycle status of a job execution."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    ABORTED = "aborted"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_waiting(self) -> bool:
        """Not started yet: no timestamps or duration may be set."""
        return self in (ExecutionStatus.PENDING, ExecutionStatus.QUEUED)

    def can_transition_to(self, target: "ExecutionStatus") -> bool:
        return target in TRANSITIONS[self]


TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset(
        {ExecutionStatus.QUEUED, ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED}
    ),
    ExecutionStatus.QUEUED: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED, ExecutionStatus.ABORTED}
    ),
    ExecutionStatus.RUNNING: frozenset(
        {
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILURE,
            ExecutionStatus.ABORTED,
            ExecutionStatus.TIMEOUT,
        }
    ),
    ExecutionStatus.SUCCESS: frozenset(),
    ExecutionStatus.FAILURE: frozenset(),
    ExecutionStatus.ABORTED: frozenset(),
    ExecutionStatus.TIMEOUT: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, nxt in TRANSITIONS.items() if not nxt)

# Statuses counted as "failed" by analytics and bulk retry
FAILED_STATUSES = frozenset({ExecutionStatus.FAILURE, ExecutionStatus.TIMEOUT})


class TriggeredBy(str, enum.Enum):
    """What caused an execution to be created."""

    SCHEDULER = "scheduler"
    MANUAL = "manual"
    API = "api"
    WEBHOOK = "webhook"
    EVENT = "event"
    RETRY = "retry"
    DEPENDENCY = "dependency"
    SYSTEM = "system"


# Metric columns; every one merges with max() so reports may arrive out of order.
METRIC_FIELDS = (
    "peak_memory_mb",
    "peak_cpu_percent",
    "rows_read",
    "rows_processed",
    "rows_inserted",
    "rows_updated",
    "rows_deleted",
    "data_quality_score",
    "steps_total",
    "steps_completed",
    "steps_failed",
)

ERROR_FIELDS = ("error_message", "error_code", "error_step_id", "error_details")


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda e: [x.value for x in e],
        name=name,
        native_enum=False,
        length=20,
    )


class JobExecution(Base, TimestampMixin):
    """One concrete run of an externally defined job."""

    __tablename__ = "job_executions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id: Mapped[int] = mapped_column(Integer, index=True)
    execution_status: Mapped[ExecutionStatus] = mapped_column(
        _enum_column(ExecutionStatus, "execution_status"),
        default=ExecutionStatus.PENDING,
        index=True,
    )

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(default=None, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)
    duration_seconds: Mapped[float | None] = mapped_column(Float, default=None)
    execution_date: Mapped[date] = mapped_column(Date, index=True)

    # Trigger
    triggered_by: Mapped[TriggeredBy] = mapped_column(
        _enum_column(TriggeredBy, "triggered_by"), default=TriggeredBy.MANUAL
    )
    triggered_by_user_id: Mapped[int | None] = mapped_column(Integer, default=None)

    # Host
    server_instance: Mapped[str | None] = mapped_column(String(255), default=None)
    worker_node_id: Mapped[str | None] = mapped_column(String(255), default=None)

    # Cross-system identifiers
    trace_id: Mapped[str | None] = mapped_column(String(128), unique=True, default=None)
    correlation_id: Mapped[str | None] = mapped_column(String(128), index=True, default=None)

    # Error tracking
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    error_code: Mapped[str | None] = mapped_column(String(100), default=None)
    error_step_id: Mapped[int | None] = mapped_column(Integer, default=None)
    error_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=None)
    execution_context: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=None)

    # Metrics
    peak_memory_mb: Mapped[float | None] = mapped_column(Float, default=None)
    peak_cpu_percent: Mapped[float | None] = mapped_column(Float, default=None)
    rows_read: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rows_processed: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rows_inserted: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rows_updated: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rows_deleted: Mapped[int | None] = mapped_column(BigInteger, default=None)
    data_quality_score: Mapped[float | None] = mapped_column(Float, default=None)
    steps_total: Mapped[int | None] = mapped_column(Integer, default=None)
    steps_completed: Mapped[int | None] = mapped_column(Integer, default=None)
    steps_failed: Mapped[int | None] = mapped_column(Integer, default=None)

    sla_breached: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    # Archival (one-way)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archived_at: Mapped[datetime | None] = mapped_column(default=None)

    # Optimistic locking; bumped on every mutation
    version: Mapped[int] = mapped_column(Integer, default=1)

    def metrics(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in METRIC_FIELDS}

    def __repr__(self) -> str:
        return f"<JobExecution {self.id} job={self.job_id} status={self.execution_status.value}>"
