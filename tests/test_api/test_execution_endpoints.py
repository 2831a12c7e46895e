"""Tests for the execution lifecycle and list endpoints."""

from datetime import timedelta

import pytest

from jobwatch.core.datetime_utils import utc_now
from jobwatch.models.execution import ExecutionStatus

pytestmark = pytest.mark.asyncio

BASE = "/api/job-executions"


async def create(client, job_id: int = 42, **fields) -> dict:
    response = await client.post(BASE, json={"job_id": job_id, "userId": 7, **fields})
    assert response.status_code == 201
    return response.json()["data"]


class TestCreateEndpoint:
    async def test_create(self, client):
        """Should create a pending execution and wrap it in an envelope."""
        response = await client.post(
            BASE, json={"job_id": 42, "userId": 7, "trace_id": "trace-1"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["source"] == "database"
        assert body["data"]["execution_status"] == "pending"
        assert body["data"]["triggered_by"] == "manual"
        assert body["data"]["started_at"] is None
        assert body["data"]["trace_id"] == "trace-1"

    async def test_missing_job_id(self, client):
        """Should answer 422 with the domain error body."""
        response = await client.post(BASE, json={"userId": 7})

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert body["message"] == "Job ID is required"

    async def test_missing_user_id(self, client):
        response = await client.post(BASE, json={"job_id": 42})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestLifecycleEndpoints:
    async def test_start_then_complete(self, client):
        execution = await create(client)

        started = await client.patch(
            f"{BASE}/{execution['id']}/start", json={"worker_node_id": "w-1"}
        )
        completed = await client.patch(
            f"{BASE}/{execution['id']}/complete", json={"duration_seconds": 125}
        )

        assert started.status_code == 200
        assert started.json()["data"]["execution_status"] == "running"
        assert started.json()["data"]["worker_node_id"] == "w-1"
        assert completed.status_code == 200
        data = completed.json()["data"]
        assert data["execution_status"] == "success"
        assert data["duration_seconds"] == 125

    async def test_start_without_body(self, client):
        execution = await create(client)

        response = await client.patch(f"{BASE}/{execution['id']}/start")

        assert response.status_code == 200
        assert response.json()["data"]["execution_status"] == "running"

    async def test_restart_after_success_is_rejected(self, client):
        """Should answer 409 naming both statuses and leave the record alone."""
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")
        await client.patch(f"{BASE}/{execution['id']}/complete", json={"duration_seconds": 5})

        response = await client.patch(f"{BASE}/{execution['id']}/start")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["details"] == {"current_status": "success", "requested_status": "running"}

        current = await client.get(f"{BASE}/{execution['id']}", params={"skipCache": "true"})
        assert current.json()["data"]["execution_status"] == "success"
        assert current.json()["data"]["duration_seconds"] == 5

    async def test_fail(self, client):
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")

        response = await client.patch(
            f"{BASE}/{execution['id']}/fail",
            json={"error_message": "disk full", "error_code": "E_DISK", "error_step_id": 3},
        )

        data = response.json()["data"]
        assert data["execution_status"] == "failure"
        assert data["error_code"] == "E_DISK"
        assert data["error_step_id"] == 3

    async def test_fail_requires_message(self, client):
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")

        response = await client.patch(f"{BASE}/{execution['id']}/fail", json={})

        assert response.status_code == 422

    async def test_abort_queued(self, client):
        execution = await create(client)
        await client.patch(
            f"{BASE}/{execution['id']}/status", json={"execution_status": "queued"}
        )

        response = await client.patch(
            f"{BASE}/{execution['id']}/abort", json={"reason": "operator request"}
        )

        data = response.json()["data"]
        assert data["execution_status"] == "aborted"
        assert data["error_message"] == "operator request"
        assert data["started_at"] is None

    async def test_timeout(self, client):
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")

        response = await client.patch(f"{BASE}/{execution['id']}/timeout")

        assert response.json()["data"]["execution_status"] == "timeout"

    async def test_cancel_pending(self, client):
        execution = await create(client)

        response = await client.patch(
            f"{BASE}/{execution['id']}/status", json={"execution_status": "cancelled"}
        )

        assert response.json()["data"]["execution_status"] == "cancelled"

    async def test_unknown_execution(self, client):
        response = await client.patch(f"{BASE}/does-not-exist/start")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestMetricsAndUpdates:
    async def test_metrics_never_decrease(self, client):
        """Should keep the highest reported peak."""
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")

        await client.patch(f"{BASE}/{execution['id']}/metrics", json={"peak_memory_mb": 512})
        response = await client.patch(
            f"{BASE}/{execution['id']}/metrics", json={"peak_memory_mb": 256, "rows_read": 10}
        )

        data = response.json()["data"]
        assert data["peak_memory_mb"] == 512
        assert data["rows_read"] == 10

    async def test_unknown_metric_is_rejected(self, client):
        execution = await create(client)

        response = await client.patch(
            f"{BASE}/{execution['id']}/metrics", json={"gpu_percent": 50}
        )

        assert response.status_code == 422

    async def test_update_metadata(self, client):
        execution = await create(client)

        response = await client.put(
            f"{BASE}/{execution['id']}", json={"execution_context": {"env": "staging"}}
        )

        assert response.status_code == 200
        assert response.json()["data"]["execution_context"] == {"env": "staging"}

    async def test_archive_running_is_rejected(self, client):
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")

        response = await client.patch(f"{BASE}/{execution['id']}/archive", json={"userId": 7})

        assert response.status_code == 409

    async def test_archive_finished(self, client):
        execution = await create(client)
        await client.patch(f"{BASE}/{execution['id']}/start")
        await client.patch(f"{BASE}/{execution['id']}/complete", json={"duration_seconds": 1})

        response = await client.patch(f"{BASE}/{execution['id']}/archive", json={"userId": 7})

        assert response.status_code == 200
        assert response.json()["data"]["archived"] is True
        assert response.json()["data"]["archived_at"] is not None

    async def test_archive_requires_user_id(self, client, execution_factory):
        execution = await execution_factory(status=ExecutionStatus.SUCCESS)

        response = await client.patch(f"{BASE}/{execution.id}/archive", json={})

        assert response.status_code == 422
        current = await client.get(f"{BASE}/{execution.id}", params={"skipCache": "true"})
        assert current.json()["data"]["archived"] is False


class TestReads:
    async def test_get_uses_cache(self, client):
        """Should serve repeated reads from cache and skipCache from the store."""
        execution = await create(client)

        first = await client.get(f"{BASE}/{execution['id']}")
        second = await client.get(f"{BASE}/{execution['id']}")
        forced = await client.get(f"{BASE}/{execution['id']}", params={"skipCache": "true"})

        assert first.json()["source"] == "database"
        assert second.json()["source"] == "cache"
        assert forced.json()["source"] == "database-forced"

    async def test_mutation_invalidates_cache(self, client):
        execution = await create(client)
        await client.get(f"{BASE}/{execution['id']}")

        await client.patch(f"{BASE}/{execution['id']}/start")
        response = await client.get(f"{BASE}/{execution['id']}")

        assert response.json()["source"] == "database"
        assert response.json()["data"]["execution_status"] == "running"

    async def test_get_missing(self, client):
        response = await client.get(f"{BASE}/missing-id")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "not_found"

    async def test_by_trace_id(self, client):
        execution = await create(client, trace_id="trace-xyz")

        response = await client.get(f"{BASE}/trace/trace-xyz")

        assert response.json()["data"]["id"] == execution["id"]

    async def test_latest_for_job(self, client, execution_factory, days_ago):
        await execution_factory(job_id=9, created_at=days_ago(3))
        newest = await execution_factory(job_id=9, created_at=days_ago(0, hours=1))

        response = await client.get(f"{BASE}/jobs/9/latest")

        assert response.json()["data"]["id"] == newest.id

    async def test_list_by_job_envelope(self, client, execution_factory):
        for _ in range(3):
            await execution_factory(job_id=9)

        response = await client.get(f"{BASE}/jobs/9", params={"limit": 2})

        body = response.json()
        assert body["success"] is True
        assert len(body["data"]) == 2
        assert body["pagination"] == {"limit": 2, "offset": 0, "total": 3, "hasMore": True}

    async def test_default_page_size(self, client, execution_factory):
        await execution_factory(job_id=9)

        response = await client.get(f"{BASE}/jobs/9")

        assert response.json()["pagination"]["limit"] == 50

    async def test_fixed_paths_are_not_treated_as_ids(self, client, execution_factory):
        running = await execution_factory(status=ExecutionStatus.RUNNING)
        queued = await execution_factory(status=ExecutionStatus.QUEUED)

        active = await client.get(f"{BASE}/active")
        waiting = await client.get(f"{BASE}/queued")
        now_running = await client.get(f"{BASE}/currently-running")

        assert [e["id"] for e in active.json()["data"]] == [running.id]
        assert [e["id"] for e in waiting.json()["data"]] == [queued.id]
        assert now_running.json()["pagination"]["total"] == 1

    async def test_list_by_status(self, client, execution_factory):
        failure = await execution_factory(status=ExecutionStatus.FAILURE)
        await execution_factory(status=ExecutionStatus.SUCCESS)

        response = await client.get(f"{BASE}/status/failure")

        assert [e["id"] for e in response.json()["data"]] == [failure.id]

    async def test_failed_list(self, client, execution_factory):
        timeout = await execution_factory(job_id=9, status=ExecutionStatus.TIMEOUT)
        await execution_factory(job_id=8, status=ExecutionStatus.FAILURE)

        response = await client.get(f"{BASE}/failed", params={"jobId": 9, "daysBack": 7})

        assert [e["id"] for e in response.json()["data"]] == [timeout.id]

    async def test_long_running_threshold(self, client, execution_factory):
        slow = await execution_factory(
            status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(hours=2)
        )
        await execution_factory(
            status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(minutes=10)
        )

        response = await client.get(f"{BASE}/long-running", params={"thresholdMinutes": 30})

        assert [e["id"] for e in response.json()["data"]] == [slow.id]

    async def test_date_range(self, client, execution_factory):
        today = utc_now().date()
        inside = await execution_factory(status=ExecutionStatus.RUNNING)

        response = await client.get(
            f"{BASE}/date-range",
            params={"startDate": today.isoformat(), "endDate": today.isoformat()},
        )

        assert [e["id"] for e in response.json()["data"]] == [inside.id]

    async def test_reversed_date_range(self, client):
        response = await client.get(
            f"{BASE}/date-range", params={"startDate": "2026-02-01", "endDate": "2026-01-01"}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_search(self, client, execution_factory):
        match = await execution_factory(job_id=9, status=ExecutionStatus.FAILURE)
        await execution_factory(job_id=9, status=ExecutionStatus.SUCCESS)

        response = await client.post(
            f"{BASE}/search",
            json={"filters": {"job_id": 9, "execution_status": "failure"}, "skipCache": True},
        )

        assert response.json()["source"] == "database-forced"
        assert [e["id"] for e in response.json()["data"]] == [match.id]


class TestSlaBreachReads:
    """A running execution past its SLA reads as breached even with no metrics reported."""

    async def _overdue(self, execution_factory):
        # job 1 has a one minute SLA
        return await execution_factory(
            job_id=1, status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(minutes=10)
        )

    async def test_get_by_id(self, client, execution_factory):
        execution = await self._overdue(execution_factory)

        response = await client.get(f"{BASE}/{execution.id}")

        assert response.json()["data"]["sla_breached"] is True

    async def test_sla_breached_list(self, client, execution_factory):
        overdue = await self._overdue(execution_factory)
        await execution_factory(job_id=1, status=ExecutionStatus.RUNNING)
        await execution_factory(
            job_id=3, status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(hours=5)
        )

        response = await client.get(f"{BASE}/sla-breached")

        body = response.json()
        assert [e["id"] for e in body["data"]] == [overdue.id]
        assert body["data"][0]["sla_breached"] is True
        assert body["pagination"]["total"] == 1

    async def test_stats_count_overdue_running(self, client, execution_factory):
        await self._overdue(execution_factory)

        response = await client.get(f"{BASE}/stats")

        assert response.json()["data"]["sla_breaches"] == 1


class TestMonitoringEndpoints:
    async def test_timeout_check_uses_job_config(self, client, execution_factory):
        """Should apply the configured 5 minute timeout of job 1."""
        execution = await execution_factory(
            job_id=1, status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(minutes=6)
        )

        response = await client.get(f"{BASE}/{execution.id}/is-timed-out")

        body = response.json()
        assert body["is_timed_out"] is True
        assert body["timeout_duration_minutes"] == 5

    async def test_timeout_check_override(self, client, execution_factory):
        execution = await execution_factory(
            job_id=1, status=ExecutionStatus.RUNNING, started_at=utc_now() - timedelta(minutes=6)
        )

        response = await client.get(
            f"{BASE}/{execution.id}/is-timed-out", params={"timeoutMinutes": 60}
        )

        assert response.json()["is_timed_out"] is False

    async def test_running_duration(self, client, execution_factory):
        execution = await execution_factory(
            status=ExecutionStatus.SUCCESS, started_at=utc_now(), duration_seconds=90
        )

        response = await client.get(f"{BASE}/{execution.id}/running-duration")

        assert response.json()["duration_seconds"] == 90

    async def test_progress(self, client, execution_factory):
        execution = await execution_factory(
            status=ExecutionStatus.RUNNING, steps_total=4, steps_completed=1
        )

        response = await client.get(f"{BASE}/{execution.id}/progress")

        body = response.json()
        assert body["percentage_complete"] == 25.0
        assert body["estimated_completion"] is not None

    async def test_resource_usage(self, client, execution_factory):
        execution = await execution_factory(
            status=ExecutionStatus.RUNNING, peak_memory_mb=300, peak_cpu_percent=40
        )

        response = await client.get(f"{BASE}/{execution.id}/resource-usage")

        assert response.json()["peak_memory_mb"] == 300
        assert response.json()["current_cpu_percent"] == 40
