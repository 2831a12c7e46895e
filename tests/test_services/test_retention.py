"""Tests for archival, retention cleanup and partition reports."""

from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from jobwatch.core.datetime_utils import utc_now
from jobwatch.core.errors import ConflictError
from jobwatch.models.execution import ExecutionStatus, JobExecution
from jobwatch.services.executions import ExecutionService
from jobwatch.services.retention import RetentionManager, partition_name

pytestmark = pytest.mark.asyncio


@pytest.fixture
def retention(db_session, app_config, query_cache) -> RetentionManager:
    return RetentionManager(db_session, app_config, query_cache)


async def count_rows(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(JobExecution))


class TestPartitionName:
    async def test_zero_padded_month(self):
        assert partition_name(date(2026, 3, 17)) == "job_executions_2026_03"
        assert partition_name(date(2025, 12, 1)) == "job_executions_2025_12"


class TestBulkArchive:
    """Per-id outcomes for bulk archive requests."""

    async def test_mixed_request_reports_every_id(self, retention, execution_factory):
        """Should archive finished executions and report the rest without failing."""
        finished = await execution_factory(status=ExecutionStatus.SUCCESS)
        failed = await execution_factory(status=ExecutionStatus.FAILURE)
        running = await execution_factory(status=ExecutionStatus.RUNNING)
        archived = await execution_factory(
            status=ExecutionStatus.SUCCESS, archived=True, archived_at=utc_now()
        )

        outcome = await retention.bulk_archive(
            [finished.id, running.id, "missing-id", archived.id, failed.id], user_id=7
        )

        assert outcome["archived"] == [finished.id, failed.id]
        assert outcome["not_terminal"] == [running.id]
        assert outcome["not_found"] == ["missing-id"]
        assert outcome["already_archived"] == [archived.id]

    async def test_repeated_call_is_harmless(self, retention, execution_factory):
        execution = await execution_factory(status=ExecutionStatus.SUCCESS)

        await retention.bulk_archive([execution.id])
        await db_refresh(retention, execution)
        first_archived_at = execution.archived_at
        outcome = await retention.bulk_archive([execution.id])
        await db_refresh(retention, execution)

        assert outcome["archived"] == []
        assert outcome["already_archived"] == [execution.id]
        assert execution.archived_at == first_archived_at

    async def test_duplicate_ids_are_reported_once(self, retention, execution_factory):
        execution = await execution_factory(status=ExecutionStatus.SUCCESS)

        outcome = await retention.bulk_archive([execution.id, execution.id])

        assert outcome["archived"] == [execution.id]
        assert outcome["already_archived"] == []

    async def test_running_execution_is_left_untouched(self, retention, execution_factory):
        running = await execution_factory(status=ExecutionStatus.RUNNING)

        await retention.bulk_archive([running.id])
        await db_refresh(retention, running)

        assert running.archived is False
        assert running.execution_status == ExecutionStatus.RUNNING

    async def test_lost_race_is_reported_as_conflicted(self, retention, execution_factory):
        """Should keep a concurrent change apart from a row that is still running."""
        execution = await execution_factory(status=ExecutionStatus.SUCCESS)
        lost = ConflictError(
            "Execution changed concurrently", current_status="success", requested_status="archived"
        )

        with patch.object(ExecutionService, "archive", side_effect=lost):
            outcome = await retention.bulk_archive([execution.id], user_id=7)

        assert outcome["conflicted"] == [execution.id]
        assert outcome["not_terminal"] == []
        assert outcome["archived"] == []


async def db_refresh(retention: RetentionManager, execution: JobExecution) -> None:
    await retention.db.refresh(execution)


class TestArchiveOld:
    async def test_archives_finished_executions_past_cutoff(
        self, retention, execution_factory, days_ago, db_session
    ):
        """Should archive only terminal executions completed before the cutoff."""
        old = [
            await execution_factory(status=ExecutionStatus.SUCCESS, created_at=days_ago(120))
            for _ in range(3)
        ]
        old_failure = await execution_factory(
            job_id=2, status=ExecutionStatus.FAILURE, created_at=days_ago(100)
        )
        recent = await execution_factory(status=ExecutionStatus.SUCCESS, created_at=days_ago(10))
        stuck = await execution_factory(status=ExecutionStatus.RUNNING, created_at=days_ago(200))

        archived, cutoff = await retention.archive_old(90)

        assert archived == 4
        assert cutoff < utc_now()
        for execution in [*old, old_failure, recent, stuck]:
            await db_session.refresh(execution)
        assert all(e.archived for e in old)
        assert all(e.archived_at is not None for e in old)
        assert old_failure.archived is True
        assert recent.archived is False
        assert stuck.archived is False

    async def test_job_filter(self, retention, execution_factory, days_ago, db_session):
        ours = await execution_factory(
            job_id=1, status=ExecutionStatus.SUCCESS, created_at=days_ago(120)
        )
        other = await execution_factory(
            job_id=2, status=ExecutionStatus.SUCCESS, created_at=days_ago(120)
        )

        archived, _ = await retention.archive_old(90, job_id=1)

        await db_session.refresh(ours)
        await db_session.refresh(other)
        assert archived == 1
        assert ours.archived is True
        assert other.archived is False

    async def test_second_run_archives_nothing(self, retention, execution_factory, days_ago):
        await execution_factory(status=ExecutionStatus.SUCCESS, created_at=days_ago(120))

        first, _ = await retention.archive_old(90)
        second, _ = await retention.archive_old(90)

        assert first == 1
        assert second == 0

    async def test_bumps_version(self, retention, execution_factory, days_ago, db_session):
        execution = await execution_factory(
            status=ExecutionStatus.SUCCESS, created_at=days_ago(120)
        )

        await retention.archive_old(90)
        await db_session.refresh(execution)

        assert execution.version == 2


class TestCleanupArchived:
    """Permanent deletion of archived rows past retention."""

    async def _seed(self, execution_factory, days_ago):
        january = await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(500),
            execution_date=date(2025, 1, 10),
            archived=True,
            archived_at=days_ago(400),
        )
        march = await execution_factory(
            status=ExecutionStatus.FAILURE,
            created_at=days_ago(450),
            execution_date=date(2025, 3, 2),
            archived=True,
            archived_at=days_ago(400),
        )
        unarchived_old = await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(500),
            execution_date=date(2025, 1, 11),
        )
        archived_recent = await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(20),
            archived=True,
            archived_at=days_ago(1),
        )
        return january, march, unarchived_old, archived_recent

    async def test_dry_run_counts_without_deleting(
        self, retention, execution_factory, days_ago, db_session
    ):
        await self._seed(execution_factory, days_ago)

        result = await retention.cleanup_archived(365, dry_run=True)

        assert result["dry_run"] is True
        assert result["eligible"] == 2
        assert result["deleted"] == 0
        assert [p["partition_name"] for p in result["partitions"]] == [
            "job_executions_2025_01",
            "job_executions_2025_03",
        ]
        assert await count_rows(db_session) == 4

    async def test_deletes_per_partition(self, retention, execution_factory, days_ago, db_session):
        """Should delete eligible archived rows one partition at a time."""
        _, _, unarchived_old, archived_recent = await self._seed(execution_factory, days_ago)

        result = await retention.cleanup_archived(365)

        assert result["dry_run"] is False
        assert result["deleted"] == 2
        assert all(p["deleted"] == 1 for p in result["partitions"])
        assert all(p["error"] is None for p in result["partitions"])
        remaining = (await db_session.execute(select(JobExecution.id))).scalars().all()
        assert set(remaining) == {unarchived_old.id, archived_recent.id}

    async def test_unarchived_rows_are_never_deleted(
        self, retention, execution_factory, days_ago, db_session
    ):
        """Should keep old rows that were never archived."""
        await execution_factory(status=ExecutionStatus.SUCCESS, created_at=days_ago(2000))
        await execution_factory(status=ExecutionStatus.RUNNING, created_at=days_ago(2000))

        result = await retention.cleanup_archived(1)

        assert result["eligible"] == 0
        assert result["partitions"] == []
        assert await count_rows(db_session) == 2

    async def test_nothing_to_clean(self, retention):
        result = await retention.cleanup_archived(365)

        assert result["eligible"] == 0
        assert result["deleted"] == 0


class TestPendingCleanup:
    async def test_lists_only_eligible_rows(self, retention, execution_factory, days_ago):
        eligible = await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(400),
            archived=True,
            archived_at=days_ago(300),
        )
        await execution_factory(status=ExecutionStatus.SUCCESS, created_at=days_ago(400))
        await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(10),
            archived=True,
            archived_at=days_ago(1),
        )

        page = await retention.pending_cleanup(365)

        assert [e.id for e in page.items] == [eligible.id]
        assert page.total == 1

    async def test_does_not_delete(self, retention, execution_factory, days_ago, db_session):
        await execution_factory(
            status=ExecutionStatus.SUCCESS,
            created_at=days_ago(400),
            archived=True,
            archived_at=days_ago(300),
        )

        await retention.pending_cleanup(365)

        assert await count_rows(db_session) == 1


class TestPartitions:
    async def test_monthly_report_newest_first(self, retention, execution_factory):
        """Should group by execution month with counts and estimated size."""
        await execution_factory(execution_date=date(2026, 1, 5))
        await execution_factory(
            status=ExecutionStatus.SUCCESS,
            execution_date=date(2026, 1, 28),
            archived=True,
            archived_at=utc_now(),
        )
        await execution_factory(execution_date=date(2026, 2, 1))

        report = await retention.partitions()

        assert [p["partition_name"] for p in report] == [
            "job_executions_2026_02",
            "job_executions_2026_01",
        ]
        january = report[1]
        assert january["row_count"] == 2
        assert january["archived_count"] == 1
        assert january["execution_date_start"] == date(2026, 1, 1)
        assert january["execution_date_end"] == date(2026, 1, 31)
        # 2 rows * 1024 bytes
        assert january["size_mb"] == 0.002
        assert report[0]["archived_count"] == 0

    async def test_empty_store(self, retention):
        assert await retention.partitions() == []
