"""
Archival, retention cleanup and partition introspection.

Partitions are logical: one per calendar month of `execution_date`, named
`job_executions_YYYY_MM`. Cleanup deletes one partition per statement and
commits after each, so a failure never leaves a partition half-deleted.
"""

from datetime import date, datetime

from sqlalchemy import Integer, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import AppConfig, get_config
from jobwatch.core.datetime_utils import get_cutoff, month_bounds, utc_now
from jobwatch.core.errors import ConflictError, InvalidTransitionError, NotFoundError
from jobwatch.core.logging import get_logger
from jobwatch.models.execution import TERMINAL_STATUSES, JobExecution
from jobwatch.services.executions import ExecutionService
from jobwatch.services.queries import Page, clamp_limit, newest_first
from jobwatch.services.query_cache import QueryCache, get_query_cache

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024


def partition_name(day: date) -> str:
    return f"job_executions_{day.year:04d}_{day.month:02d}"


def _retention_age():
    """Age reference for cleanup: completion time, or creation for never-finished rows."""
    return func.coalesce(JobExecution.completed_at, JobExecution.created_at)


class RetentionManager:
    """Bulk archive, age-based archive, cleanup and partition reports."""

    def __init__(
        self,
        db: AsyncSession,
        config: AppConfig | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.db = db
        self.config = config or get_config()
        self.settings = self.config.settings
        self.cache = cache or get_query_cache()

    async def bulk_archive(self, execution_ids: list[str], user_id: int | None = None) -> dict:
        """
        Archive each id independently and report what happened to every one.

        Unknown, already archived and still running ids are reported, never
        raised, so a retried call is harmless. An id whose row changed under
        us between read and write is reported as conflicted and can be retried.
        """
        outcome: dict[str, list[str]] = {
            "archived": [],
            "already_archived": [],
            "not_terminal": [],
            "not_found": [],
            "conflicted": [],
        }
        service = ExecutionService(self.db, self.config, self.cache)
        batch_size = self.settings.bulk_batch_size
        unique_ids = list(dict.fromkeys(execution_ids))

        for start in range(0, len(unique_ids), batch_size):
            batch = unique_ids[start : start + batch_size]
            for execution_id in batch:
                try:
                    execution = await service.get(execution_id)
                    if execution.archived:
                        outcome["already_archived"].append(execution_id)
                        continue
                    await service.archive(execution_id, user_id=user_id)
                    outcome["archived"].append(execution_id)
                except NotFoundError:
                    outcome["not_found"].append(execution_id)
                except ConflictError:
                    outcome["conflicted"].append(execution_id)
                except InvalidTransitionError:
                    outcome["not_terminal"].append(execution_id)
            await self.db.commit()
            logger.bind(
                batch_start=start,
                batch_size=len(batch),
                archived=len(outcome["archived"]),
                user_id=user_id,
            ).info("bulk_archive_batch")

        return outcome

    async def archive_old(
        self,
        older_than_days: int,
        job_id: int | None = None,
        user_id: int | None = None,
    ) -> tuple[int, datetime]:
        """
        Archive finished executions completed before the cutoff.

        Returns:
            (number archived by this call, cutoff)
        """
        cutoff = get_cutoff(days=older_than_days)
        batch_size = self.settings.bulk_batch_size
        archived = 0

        while True:
            query = (
                select(JobExecution.id)
                .where(
                    JobExecution.archived.is_(False),
                    JobExecution.execution_status.in_(TERMINAL_STATUSES),
                    JobExecution.completed_at < cutoff,
                )
                .order_by(JobExecution.id)
                .limit(batch_size)
            )
            if job_id is not None:
                query = query.where(JobExecution.job_id == job_id)
            ids = list((await self.db.execute(query)).scalars().all())
            if not ids:
                break

            now = utc_now()
            result = await self.db.execute(
                update(JobExecution)
                .where(JobExecution.id.in_(ids), JobExecution.archived.is_(False))
                .values(
                    archived=True,
                    archived_at=now,
                    updated_at=now,
                    version=JobExecution.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            archived += result.rowcount
            logger.bind(batch=len(ids), archived=archived, job_id=job_id).info(
                "archive_old_batch"
            )
            if len(ids) < batch_size:
                break

        if archived:
            self.cache.invalidate()
        logger.bind(
            archived=archived,
            older_than_days=older_than_days,
            job_id=job_id,
            user_id=user_id,
        ).info("archive_old_complete")
        return archived, cutoff

    async def cleanup_archived(self, older_than_days: int = 365, dry_run: bool = False) -> dict:
        """
        Permanently delete archived executions past the retention cutoff.

        Rows that are not archived are never touched, whatever their age.
        """
        cutoff = get_cutoff(days=older_than_days)
        eligible = (
            JobExecution.archived.is_(True),
            _retention_age() < cutoff,
        )
        counts_query = (
            select(JobExecution.execution_date, func.count())
            .where(*eligible)
            .group_by(JobExecution.execution_date)
        )
        per_month: dict[date, int] = {}
        for day, count in (await self.db.execute(counts_query)).all():
            first, _ = month_bounds(day)
            per_month[first] = per_month.get(first, 0) + count

        partitions = []
        deleted_total = 0
        for first in sorted(per_month):
            name = partition_name(first)
            entry = {
                "partition_name": name,
                "eligible": per_month[first],
                "deleted": 0,
                "error": None,
            }
            partitions.append(entry)
            if dry_run:
                continue

            _, last = month_bounds(first)
            try:
                result = await self.db.execute(
                    delete(JobExecution)
                    .where(
                        *eligible,
                        JobExecution.execution_date >= first,
                        JobExecution.execution_date <= last,
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.bind(partition=name, error=str(e)).error("cleanup_partition_failed")
                entry["error"] = str(e)
                continue

            deleted_total += result.rowcount
            entry["deleted"] = result.rowcount
            logger.bind(partition=name, deleted=result.rowcount).info("cleanup_partition_done")

        if deleted_total:
            self.cache.invalidate()
        logger.bind(
            dry_run=dry_run,
            eligible=sum(per_month.values()),
            deleted=deleted_total,
            older_than_days=older_than_days,
        ).info("cleanup_archived_complete")
        return {
            "dry_run": dry_run,
            "cutoff": cutoff,
            "eligible": sum(per_month.values()),
            "deleted": deleted_total,
            "partitions": partitions,
        }

    async def pending_cleanup(
        self,
        retention_days: int = 365,
        limit: int | None = None,
        offset: int = 0,
    ) -> Page:
        """Executions cleanup would delete, without deleting them."""
        cutoff = get_cutoff(days=retention_days)
        query = select(JobExecution).where(
            JobExecution.archived.is_(True),
            _retention_age() < cutoff,
        )
        limit = clamp_limit(limit, self.settings)
        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(newest_first(query).limit(limit).offset(offset))
        return Page(
            items=list(result.scalars().all()), total=total or 0, limit=limit, offset=offset
        )

    async def partitions(self) -> list[dict]:
        """Monthly partitions by execution_date with row counts and estimated size."""
        query = select(
            JobExecution.execution_date,
            func.count(),
            func.sum(case((JobExecution.archived.is_(True), 1), else_=0)).cast(Integer),
        ).group_by(JobExecution.execution_date)

        months: dict[date, list[int]] = {}
        for day, rows, archived in (await self.db.execute(query)).all():
            first, _ = month_bounds(day)
            totals = months.setdefault(first, [0, 0])
            totals[0] += rows
            totals[1] += archived or 0

        row_bytes = self.config.retention.estimated_row_bytes
        report = []
        for first in sorted(months, reverse=True):
            rows, archived = months[first]
            _, last = month_bounds(first)
            report.append(
                {
                    "partition_name": partition_name(first),
                    "execution_date_start": first,
                    "execution_date_end": last,
                    "row_count": rows,
                    "archived_count": archived,
                    "size_mb": round(rows * row_bytes / BYTES_PER_MB, 3),
                }
            )
        return report
