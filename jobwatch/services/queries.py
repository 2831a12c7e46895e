"""
Read-only lookups over the execution store.

Every list returns a Page ordered most recently started first, with
never-started executions last and `id` as the tie-break so that offset
pagination is stable.
"""

from dataclasses import dataclass
from datetime import date

from sqlalchemy import Select, func, not_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import AppConfig, JobsConfig, Settings, get_config, get_settings
from jobwatch.core.datetime_utils import day_bounds, get_cutoff
from jobwatch.core.errors import NotFoundError, ValidationError
from jobwatch.models.execution import FAILED_STATUSES, ExecutionStatus, JobExecution
from jobwatch.schemas.execution import SearchFilters
from jobwatch.services.sla import sla_breached_clause


@dataclass
class Page:
    items: list[JobExecution]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def clamp_limit(limit: int | None, settings: Settings | None = None) -> int:
    """Default when omitted, at least 1, at most the configured maximum."""
    settings = settings or get_settings()
    if limit is None:
        return settings.default_page_limit
    return max(1, min(limit, settings.max_page_limit))


def newest_first(query: Select) -> Select:
    return query.order_by(
        JobExecution.started_at.is_(None),
        JobExecution.started_at.desc(),
        JobExecution.id.asc(),
    )


class ExecutionQueries:
    """Query and filter engine."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.config = config or get_config()

    @property
    def jobs(self) -> JobsConfig:
        return self.config.jobs

    # ------------------------------------------------------------------
    # Single lookups
    # ------------------------------------------------------------------

    async def by_id(self, execution_id: str) -> JobExecution:
        result = await self.db.execute(select(JobExecution).where(JobExecution.id == execution_id))
        execution = result.scalar_one_or_none()
        if execution is None:
            raise NotFoundError(f"Job execution {execution_id} not found", id=execution_id)
        return execution

    async def by_trace_id(self, trace_id: str) -> JobExecution:
        result = await self.db.execute(
            select(JobExecution).where(JobExecution.trace_id == trace_id)
        )
        execution = result.scalar_one_or_none()
        if execution is None:
            raise NotFoundError(f"No execution with trace id {trace_id}", trace_id=trace_id)
        return execution

    async def latest_for_job(self, job_id: int) -> JobExecution:
        query = (
            select(JobExecution)
            .where(JobExecution.job_id == job_id)
            .order_by(JobExecution.created_at.desc(), JobExecution.id.asc())
            .limit(1)
        )
        execution = (await self.db.execute(query)).scalar_one_or_none()
        if execution is None:
            raise NotFoundError(f"No executions for job {job_id}", job_id=job_id)
        return execution

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def history(self, job_id: int, limit: int | None = None) -> list[JobExecution]:
        """Newest-first history for a job, archived executions included."""
        query = newest_first(select(JobExecution).where(JobExecution.job_id == job_id))
        result = await self.db.execute(query.limit(clamp_limit(limit, self.settings)))
        return list(result.scalars().all())

    async def timeline(self, job_id: int, limit: int | None = None) -> list[JobExecution]:
        """Most recent executions for a job, returned oldest first."""
        query = (
            select(JobExecution)
            .where(JobExecution.job_id == job_id, JobExecution.started_at.is_not(None))
            .order_by(JobExecution.started_at.desc(), JobExecution.id.asc())
            .limit(clamp_limit(limit, self.settings))
        )
        rows = list((await self.db.execute(query)).scalars().all())
        rows.reverse()
        return rows

    async def by_job(
        self,
        job_id: int,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        query = select(JobExecution).where(JobExecution.job_id == job_id)
        return await self._page(query, limit, offset, include_archived)

    async def by_status(
        self,
        status: ExecutionStatus,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        query = select(JobExecution).where(JobExecution.execution_status == status)
        return await self._page(query, limit, offset, include_archived)

    async def by_date_range(
        self,
        start_date: date,
        end_date: date,
        field: str = "started_at",
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        """Executions whose start (or logical date) falls within [start_date, end_date]."""
        if end_date < start_date:
            raise ValidationError(
                "endDate must not be before startDate",
                startDate=start_date.isoformat(),
                endDate=end_date.isoformat(),
            )
        if field == "execution_date":
            query = select(JobExecution).where(
                JobExecution.execution_date >= start_date,
                JobExecution.execution_date <= end_date,
            )
        elif field == "started_at":
            lower, upper = day_bounds(start_date, end_date)
            query = select(JobExecution).where(
                JobExecution.started_at >= lower,
                JobExecution.started_at < upper,
            )
        else:
            raise ValidationError("Unsupported date field", field=field)
        return await self._page(query, limit, offset, include_archived)

    async def by_correlation(
        self,
        correlation_id: str,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        query = select(JobExecution).where(JobExecution.correlation_id == correlation_id)
        return await self._page(query, limit, offset, include_archived)

    async def failed(
        self,
        days_back: int = 7,
        job_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        query = select(JobExecution).where(
            JobExecution.execution_status.in_(FAILED_STATUSES),
            JobExecution.created_at >= get_cutoff(days=days_back),
        )
        if job_id is not None:
            query = query.where(JobExecution.job_id == job_id)
        return await self._page(query, limit, offset, include_archived)

    async def sla_breached(
        self,
        days_back: int = 7,
        job_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        """Flagged executions plus running ones already past their SLA."""
        query = select(JobExecution).where(
            sla_breached_clause(self.jobs),
            JobExecution.created_at >= get_cutoff(days=days_back),
        )
        if job_id is not None:
            query = query.where(JobExecution.job_id == job_id)
        return await self._page(query, limit, offset, include_archived)

    async def active(
        self,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        return await self.by_status(ExecutionStatus.RUNNING, limit, offset, include_archived)

    async def queued(
        self,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        return await self.by_status(ExecutionStatus.QUEUED, limit, offset, include_archived)

    async def currently_running(self) -> list[JobExecution]:
        """Live snapshot of every running execution, unpaginated."""
        query = newest_first(
            select(JobExecution).where(
                JobExecution.execution_status == ExecutionStatus.RUNNING,
                JobExecution.archived.is_(False),
            )
        )
        return list((await self.db.execute(query)).scalars().all())

    async def long_running(
        self,
        threshold_minutes: float = 60,
        limit: int | None = None,
        offset: int = 0,
        include_archived: bool = False,
    ) -> Page:
        """Running executions started at least `threshold_minutes` ago."""
        query = select(JobExecution).where(
            JobExecution.execution_status == ExecutionStatus.RUNNING,
            JobExecution.started_at <= get_cutoff(minutes=threshold_minutes),
        )
        return await self._page(query, limit, offset, include_archived)

    async def search(
        self,
        filters: SearchFilters,
        limit: int | None = None,
        offset: int = 0,
    ) -> Page:
        """AND of every supplied filter. `archived` is honoured as given; unset means both."""
        query = select(JobExecution)
        if filters.job_id is not None:
            query = query.where(JobExecution.job_id == filters.job_id)
        if filters.execution_status is not None:
            query = query.where(JobExecution.execution_status == filters.execution_status)
        if filters.started_at_min is not None:
            query = query.where(JobExecution.started_at >= filters.started_at_min)
        if filters.started_at_max is not None:
            query = query.where(JobExecution.started_at <= filters.started_at_max)
        if filters.triggered_by is not None:
            query = query.where(JobExecution.triggered_by == filters.triggered_by)
        if filters.server_instance is not None:
            query = query.where(JobExecution.server_instance == filters.server_instance)
        if filters.worker_node_id is not None:
            query = query.where(JobExecution.worker_node_id == filters.worker_node_id)
        if filters.sla_breached is not None:
            breached = sla_breached_clause(self.jobs)
            query = query.where(breached if filters.sla_breached else not_(breached))
        if filters.archived is not None:
            query = query.where(JobExecution.archived.is_(filters.archived))
        return await self._page(query, limit, offset, include_archived=True)

    async def _page(
        self,
        query: Select,
        limit: int | None,
        offset: int,
        include_archived: bool,
    ) -> Page:
        if not include_archived:
            query = query.where(JobExecution.archived.is_(False))
        limit = clamp_limit(limit, self.settings)
        offset = max(offset, 0)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(newest_first(query).limit(limit).offset(offset))
        return Page(
            items=list(result.scalars().all()),
            total=total or 0,
            limit=limit,
            offset=offset,
        )
