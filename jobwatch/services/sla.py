"""
SLA breach rules.

The stored `sla_breached` flag is written when an execution finishes, or when
a running execution reports metrics after its SLA has passed. A running
execution that never reports is still breached once its elapsed time exceeds
the SLA, so reads combine the stored flag with an elapsed-time check.
"""

from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, and_, false, or_

from jobwatch.config import JobsConfig
from jobwatch.core.datetime_utils import elapsed_seconds, utc_now
from jobwatch.models.execution import ExecutionStatus, JobExecution


def is_sla_breached(duration_seconds: float | None, sla_seconds: float | None) -> bool:
    """Duration (final or elapsed so far) strictly exceeds the SLA."""
    if duration_seconds is None or sla_seconds is None:
        return False
    return duration_seconds > sla_seconds


def effective_sla_breached(
    execution: JobExecution, jobs: JobsConfig, now: datetime | None = None
) -> bool:
    """Stored flag, or still running past the job's SLA."""
    if execution.sla_breached:
        return True
    if execution.execution_status != ExecutionStatus.RUNNING or execution.started_at is None:
        return False
    sla_seconds = jobs.policy_for(execution.job_id).sla_seconds
    return is_sla_breached(elapsed_seconds(execution.started_at, now), sla_seconds)


def sla_breached_clause(jobs: JobsConfig, now: datetime | None = None) -> ColumnElement[bool]:
    """SQL form of `effective_sla_breached`, one started_at bound per configured job."""
    now = now or utc_now()
    overdue = []
    for job_id, policy in jobs.policies.items():
        if policy.sla_seconds is not None:
            overdue.append(
                and_(
                    JobExecution.job_id == job_id,
                    JobExecution.started_at < now - timedelta(seconds=policy.sla_seconds),
                )
            )

    default_sla = jobs.defaults.sla_seconds
    if default_sla is not None:
        unlisted = JobExecution.started_at < now - timedelta(seconds=default_sla)
        if jobs.policies:
            unlisted = and_(JobExecution.job_id.not_in(list(jobs.policies)), unlisted)
        overdue.append(unlisted)

    running_overdue = (
        and_(JobExecution.execution_status == ExecutionStatus.RUNNING, or_(*overdue))
        if overdue
        else false()
    )
    return or_(JobExecution.sla_breached.is_(True), running_overdue)
