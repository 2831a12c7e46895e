"""
Execution state machine and mutation service.

Every status change goes through `ExecutionStatus.can_transition_to` and is
written with a single compare-and-set UPDATE on (id, execution_status,
version). A caller that loses the race gets ConflictError and the row is
left as the winner wrote it.

    pending -> queued -> running -> success | failure | aborted | timeout
    pending | queued -> cancelled
    queued -> aborted
"""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import AppConfig, get_config
from jobwatch.core.datetime_utils import elapsed_seconds, utc_now
from jobwatch.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from jobwatch.core.logging import get_logger
from jobwatch.core.retry import RetryConfig, retry_with_backoff
from jobwatch.models.execution import (
    ERROR_FIELDS,
    METRIC_FIELDS,
    ExecutionStatus,
    JobExecution,
    TriggeredBy,
)
from jobwatch.services.query_cache import QueryCache, get_query_cache
from jobwatch.services.sla import is_sla_breached

logger = get_logger(__name__)

ABORTED_MARKER = "aborted"

# Fields the generic update may touch besides execution_status
UPDATABLE_FIELDS = frozenset(
    {
        *ERROR_FIELDS,
        "execution_context",
        "server_instance",
        "worker_node_id",
        "trace_id",
        "correlation_id",
    }
)
# Of those, the ones frozen once the execution is terminal
FROZEN_WHEN_TERMINAL = frozenset(
    {"server_instance", "worker_node_id", "trace_id", "correlation_id"}
)
# Only these outcomes may carry error details
ERROR_STATUSES = frozenset(
    {ExecutionStatus.FAILURE, ExecutionStatus.ABORTED, ExecutionStatus.TIMEOUT}
)

METRICS_RETRY = RetryConfig(
    max_attempts=5,
    backoff_base=0.05,
    backoff_max=1.0,
    retryable_exceptions=(ConflictError,),
)


def merge_metrics(current: dict[str, Any], reported: dict[str, Any]) -> dict[str, Any]:
    """
    Merge a metrics report into the current values.

    Every metric is a high-water mark or a running total, so the merge is
    max(): commutative, idempotent and safe under out-of-order delivery.
    Values below the recorded one are ignored rather than rejected.

    Returns:
        Only the fields whose stored value changes
    """
    changed: dict[str, Any] = {}
    for name, value in reported.items():
        if value is None:
            continue
        existing = current.get(name)
        if existing is None or value > existing:
            changed[name] = value
    return changed


def is_timed_out(
    execution: JobExecution,
    timeout_seconds: float | None,
    now: datetime | None = None,
) -> bool:
    """Running longer than the job's timeout. Evaluated on read, never scheduled."""
    if timeout_seconds is None or execution.execution_status != ExecutionStatus.RUNNING:
        return False
    if execution.started_at is None:
        return False
    return elapsed_seconds(execution.started_at, now) > timeout_seconds


class ExecutionService:
    """Creates executions and moves them through their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        config: AppConfig | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.db = db
        self.config = config or get_config()
        self.cache = cache or get_query_cache()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, execution_id: str, fresh: bool = False) -> JobExecution:
        """Load one execution or raise NotFoundError."""
        query = select(JobExecution).where(JobExecution.id == execution_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        execution = result.scalar_one_or_none()
        if execution is None:
            raise NotFoundError(f"Job execution {execution_id} not found", id=execution_id)
        return execution

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        job_id: int | None,
        user_id: int | None,
        server_instance: str | None = None,
        worker_node_id: str | None = None,
        execution_context: dict[str, Any] | None = None,
        triggered_by: TriggeredBy | None = None,
        trace_id: str | None = None,
        correlation_id: str | None = None,
    ) -> JobExecution:
        """Persist a new execution in `pending`. Does not start the job."""
        if not job_id:
            raise ValidationError("Job ID is required", field="job_id")
        if user_id is None:
            raise ValidationError("User ID is required", field="userId")
        if trace_id:
            await self._ensure_trace_available(trace_id)

        now = utc_now()
        execution = JobExecution(
            job_id=job_id,
            execution_status=ExecutionStatus.PENDING,
            triggered_by=triggered_by or TriggeredBy.MANUAL,
            triggered_by_user_id=user_id,
            server_instance=server_instance,
            worker_node_id=worker_node_id,
            execution_context=execution_context,
            trace_id=trace_id,
            correlation_id=correlation_id,
            execution_date=now.date(),
            sla_breached=False,
            archived=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.db.add(execution)
        await self.db.flush()
        self.cache.invalidate()

        logger.bind(
            execution_id=execution.id,
            job_id=job_id,
            triggered_by=execution.triggered_by.value,
            user_id=user_id,
        ).info("execution_created")
        return execution

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def mark_started(
        self,
        execution_id: str,
        server_instance: str | None = None,
        worker_node_id: str | None = None,
    ) -> JobExecution:
        """pending|queued -> running. Repeated starts are rejected, not ignored."""
        execution = await self.get(execution_id)
        values: dict[str, Any] = {}
        if server_instance is not None:
            values["server_instance"] = server_instance
        if worker_node_id is not None:
            values["worker_node_id"] = worker_node_id
        return await self._transition(execution, ExecutionStatus.RUNNING, values)

    async def mark_completed(
        self,
        execution_id: str,
        execution_status: ExecutionStatus = ExecutionStatus.SUCCESS,
        duration_seconds: float | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> JobExecution:
        """running -> success, with optional duration and final metrics."""
        if execution_status != ExecutionStatus.SUCCESS:
            raise ValidationError(
                "Completion only records success; use fail, abort or timeout instead",
                execution_status=execution_status.value,
            )
        if duration_seconds is not None and duration_seconds < 0:
            raise ValidationError("duration_seconds must not be negative", field="duration_seconds")

        execution = await self.get(execution_id)
        values = merge_metrics(execution.metrics(), self._clean_metrics(metrics or {}))
        return await self._transition(
            execution, ExecutionStatus.SUCCESS, values, duration_seconds=duration_seconds
        )

    async def mark_failed(
        self,
        execution_id: str,
        error_message: str,
        error_code: str | None = None,
        error_step_id: int | None = None,
        error_details: dict[str, Any] | None = None,
    ) -> JobExecution:
        """running -> failure, recording the error."""
        if not error_message or not error_message.strip():
            raise ValidationError("error_message is required", field="error_message")

        execution = await self.get(execution_id)
        values = {
            "error_message": error_message,
            "error_code": error_code,
            "error_step_id": error_step_id,
            "error_details": error_details,
        }
        return await self._transition(execution, ExecutionStatus.FAILURE, values)

    async def mark_aborted(self, execution_id: str, reason: str | None = None) -> JobExecution:
        """running|queued -> aborted."""
        execution = await self.get(execution_id)
        values = {"error_message": reason or ABORTED_MARKER}
        return await self._transition(execution, ExecutionStatus.ABORTED, values)

    async def mark_timeout(self, execution_id: str) -> JobExecution:
        """running -> timeout."""
        execution = await self.get(execution_id)
        return await self._transition(execution, ExecutionStatus.TIMEOUT, {})

    async def update_status(
        self, execution_id: str, execution_status: ExecutionStatus
    ) -> JobExecution:
        """Move to any legal successor, filling in the timestamps it implies."""
        execution = await self.get(execution_id)
        return await self._transition(execution, execution_status, {})

    async def update(self, execution_id: str, fields: dict[str, Any]) -> JobExecution:
        """
        Correct execution metadata.

        Status changes are still checked against the transition table. Error
        fields are accepted only when the resulting status is failure, aborted
        or timeout, and host and trace identifiers are frozen once the
        execution is terminal.
        """
        fields = dict(fields)
        target = fields.pop("execution_status", None)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Fields cannot be updated", fields=sorted(unknown)
            )

        execution = await self.get(execution_id)
        current = execution.execution_status
        target = ExecutionStatus(target) if target is not None else None
        final_status = target or current

        setting_errors = [name for name in ERROR_FIELDS if fields.get(name) is not None]
        if setting_errors and final_status not in ERROR_STATUSES:
            raise ValidationError(
                f"Error fields cannot be set on a {final_status.value} execution",
                fields=setting_errors,
            )
        if current.is_terminal:
            frozen = sorted(FROZEN_WHEN_TERMINAL & set(fields))
            if frozen:
                raise ValidationError(
                    "Fields are frozen once the execution has finished", fields=frozen
                )
        if fields.get("trace_id") and fields["trace_id"] != execution.trace_id:
            await self._ensure_trace_available(fields["trace_id"])

        if target is not None and target != current:
            return await self._transition(execution, target, fields)
        if not fields:
            return execution
        return await self._compare_and_set(execution, current, fields)

    # ------------------------------------------------------------------
    # Metrics and archival
    # ------------------------------------------------------------------

    async def record_metrics(self, execution_id: str, metrics: dict[str, Any]) -> JobExecution:
        """
        Merge a partial metrics report into a non-terminal execution.

        Concurrent reports for the same execution may race; the loser re-reads
        and re-merges, which converges because the merge is max().
        """
        reported = self._clean_metrics(metrics)

        async def attempt() -> JobExecution:
            execution = await self.get(execution_id, fresh=True)
            status = execution.execution_status
            if status.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot record metrics on a {status.value} execution",
                    current_status=status.value,
                    requested_status="metrics",
                )

            values = merge_metrics(execution.metrics(), reported)
            if status == ExecutionStatus.RUNNING and not execution.sla_breached:
                policy = self.config.jobs.policy_for(execution.job_id)
                elapsed = elapsed_seconds(execution.started_at) if execution.started_at else None
                if is_sla_breached(elapsed, policy.sla_seconds):
                    values["sla_breached"] = True
            if not values:
                return execution
            return await self._compare_and_set(execution, status, values)

        return await retry_with_backoff(
            attempt, config=METRICS_RETRY, operation_name=f"record_metrics:{execution_id}"
        )

    async def archive(self, execution_id: str, user_id: int | None = None) -> JobExecution:
        """
        Flag a finished execution as archived.

        Idempotent: an already archived execution is returned unchanged,
        keeping its original archived_at.
        """
        execution = await self.get(execution_id)
        if execution.archived:
            return execution

        status = execution.execution_status
        if not status.is_terminal:
            raise InvalidTransitionError(
                "Only finished executions can be archived",
                current_status=status.value,
                requested_status="archived",
            )

        try:
            await self._compare_and_set(
                execution, status, {"archived": True, "archived_at": utc_now()}
            )
        except ConflictError:
            execution = await self.get(execution_id, fresh=True)
            if execution.archived:
                return execution
            raise

        logger.bind(execution_id=execution_id, user_id=user_id).info("execution_archived")
        return execution

    # ------------------------------------------------------------------
    # Monitoring reads
    # ------------------------------------------------------------------

    async def running_duration(self, execution_id: str) -> dict[str, Any]:
        execution = await self.get(execution_id)
        if execution.duration_seconds is not None:
            duration = execution.duration_seconds
        elif execution.started_at is not None:
            duration = elapsed_seconds(execution.started_at, execution.completed_at)
        else:
            duration = 0.0
        return {"duration_seconds": round(duration, 3), "started_at": execution.started_at}

    async def timeout_check(
        self, execution_id: str, timeout_minutes: float | None = None
    ) -> dict[str, Any]:
        """The timeout-detection predicate, with an optional per-call override."""
        execution = await self.get(execution_id)
        if timeout_minutes is None:
            timeout_minutes = self.config.jobs.policy_for(execution.job_id).timeout_minutes

        running_seconds = 0.0
        if execution.started_at is not None:
            running_seconds = elapsed_seconds(execution.started_at, execution.completed_at)

        timeout_seconds = timeout_minutes * 60 if timeout_minutes is not None else None
        return {
            "is_timed_out": is_timed_out(execution, timeout_seconds),
            "timeout_duration_minutes": timeout_minutes,
            "running_duration_minutes": round(running_seconds / 60, 2),
        }

    async def progress(self, execution_id: str) -> dict[str, Any]:
        execution = await self.get(execution_id)
        total = execution.steps_total or 0
        completed = execution.steps_completed or 0
        failed = execution.steps_failed or 0

        if total:
            percentage = min(completed / total * 100, 100.0)
        elif execution.execution_status == ExecutionStatus.SUCCESS:
            percentage = 100.0
        else:
            percentage = 0.0

        estimated: datetime | None = None
        if (
            execution.execution_status == ExecutionStatus.RUNNING
            and execution.started_at is not None
            and 0 < completed < total
        ):
            elapsed = elapsed_seconds(execution.started_at)
            estimated = execution.started_at + timedelta(seconds=elapsed * total / completed)

        return {
            "steps_total": total,
            "steps_completed": completed,
            "steps_failed": failed,
            "percentage_complete": round(percentage, 2),
            "estimated_completion": estimated,
        }

    async def resource_usage(self, execution_id: str) -> dict[str, Any]:
        execution = await self.get(execution_id)
        # Only peaks are reported by workers; there is no live sampling.
        return {
            "peak_memory_mb": execution.peak_memory_mb,
            "peak_cpu_percent": execution.peak_cpu_percent,
            "current_memory_mb": execution.peak_memory_mb,
            "current_cpu_percent": execution.peak_cpu_percent,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _status_values(
        self,
        execution: JobExecution,
        target: ExecutionStatus,
        duration_seconds: float | None = None,
    ) -> dict[str, Any]:
        """Timestamps, duration and SLA flag implied by entering `target`."""
        now = utc_now()
        if target == ExecutionStatus.RUNNING:
            return {"started_at": now, "execution_date": now.date()}
        if not target.is_terminal:
            return {}

        started_at = execution.started_at
        if started_at is None:
            # cancelled/aborted before it ever ran
            return {"completed_at": now, "duration_seconds": None}

        if duration_seconds is not None:
            duration = float(duration_seconds)
            completed_at = started_at + timedelta(seconds=duration)
        else:
            completed_at = now
            duration = round(elapsed_seconds(started_at, now), 3)

        policy = self.config.jobs.policy_for(execution.job_id)
        return {
            "completed_at": completed_at,
            "duration_seconds": duration,
            "sla_breached": execution.sla_breached or is_sla_breached(duration, policy.sla_seconds),
        }

    def _check_transition(self, execution: JobExecution, target: ExecutionStatus) -> None:
        current = execution.execution_status
        if current.can_transition_to(target):
            return
        logger.bind(
            execution_id=execution.id,
            from_status=current.value,
            to_status=target.value,
        ).warning("execution_transition_rejected")
        raise InvalidTransitionError(
            f"Cannot move execution from {current.value} to {target.value}",
            current_status=current.value,
            requested_status=target.value,
        )

    async def _transition(
        self,
        execution: JobExecution,
        target: ExecutionStatus,
        values: dict[str, Any],
        duration_seconds: float | None = None,
    ) -> JobExecution:
        self._check_transition(execution, target)
        current = execution.execution_status
        changes = {
            **values,
            **self._status_values(execution, target, duration_seconds),
            "execution_status": target,
        }
        await self._compare_and_set(execution, current, changes)
        logger.bind(
            execution_id=execution.id,
            job_id=execution.job_id,
            from_status=current.value,
            to_status=target.value,
            duration_seconds=execution.duration_seconds,
        ).info("execution_transitioned")
        return execution

    async def _compare_and_set(
        self,
        execution: JobExecution,
        expected_status: ExecutionStatus,
        values: dict[str, Any],
    ) -> JobExecution:
        """Apply `values` only if nobody changed the row since it was read."""
        expected_version = execution.version
        result = await self.db.execute(
            update(JobExecution)
            .where(
                JobExecution.id == execution.id,
                JobExecution.execution_status == expected_status,
                JobExecution.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.refresh(execution)
            logger.bind(
                execution_id=execution.id,
                expected_status=expected_status.value,
                expected_version=expected_version,
                actual_status=execution.execution_status.value,
                actual_version=execution.version,
            ).warning("execution_cas_conflict")
            requested = values.get("execution_status", expected_status)
            raise ConflictError(
                "Execution was modified concurrently",
                current_status=execution.execution_status.value,
                requested_status=ExecutionStatus(requested).value,
            )

        await self.db.refresh(execution)
        self.cache.invalidate()
        return execution

    @staticmethod
    def _clean_metrics(metrics: dict[str, Any]) -> dict[str, Any]:
        unknown = set(metrics) - set(METRIC_FIELDS)
        if unknown:
            raise ValidationError("Unknown metric fields", fields=sorted(unknown))
        negative = sorted(k for k, v in metrics.items() if v is not None and v < 0)
        if negative:
            raise ValidationError("Metrics must not be negative", fields=negative)
        return {k: v for k, v in metrics.items() if v is not None}

    async def _ensure_trace_available(self, trace_id: str) -> None:
        result = await self.db.execute(
            select(JobExecution.id).where(JobExecution.trace_id == trace_id)
        )
        if result.first() is not None:
            raise ValidationError("trace_id is already in use", field="trace_id", trace_id=trace_id)
