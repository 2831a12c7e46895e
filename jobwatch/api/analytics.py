"""Read-only analytics endpoints.

Every endpoint answers `{"success": true, "data": ..., "source": ...}` and
accepts `skipCache`. Empty windows produce zero/null-bearing data, never an
error.
"""

from collections.abc import Awaitable, Callable, Hashable
from typing import Annotated, Any

from fastapi import APIRouter, Query
from pydantic import BaseModel

from jobwatch.dependencies import Analytics, Cache, Queries
from jobwatch.schemas.analytics import AnalyticsResponse, TimelineItem
from jobwatch.services.analytics import DistributionPeriod
from jobwatch.services.query_cache import QueryCache

router = APIRouter()

SkipCache = Annotated[bool, Query(alias="skipCache", description="Read the store directly")]
JobFilter = Annotated[int | None, Query(alias="jobId")]

DaysBack = Annotated[int, Query(ge=1, le=3650, alias="daysBack")]


def _dump(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_dump(item) for item in result]
    return result


async def _respond(
    cache: QueryCache,
    key: Hashable,
    loader: Callable[[], Awaitable[Any]],
    skip_cache: bool,
) -> AnalyticsResponse:
    async def load() -> Any:
        return _dump(await loader())

    data, source = await cache.get_or_load(("analytics", *key), load, skip_cache=skip_cache)
    return AnalyticsResponse(data=data, source=source)


@router.get("/stats", response_model=AnalyticsResponse)
async def stats(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Status counts, success rate and duration totals over the window."""
    return await _respond(
        cache,
        ("stats", job_id, days_back),
        lambda: analytics.stats(job_id, days_back),
        skip_cache,
    )


@router.get("/success-rate", response_model=AnalyticsResponse)
async def success_rate(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """success / (success + failure + timeout); null when nothing finished."""
    return await _respond(
        cache,
        ("success_rate", job_id, days_back),
        lambda: analytics.success_rate(job_id, days_back),
        skip_cache,
    )


@router.get("/average-duration", response_model=AnalyticsResponse)
async def average_duration(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("average_duration", job_id, days_back),
        lambda: analytics.average_duration(job_id, days_back),
        skip_cache,
    )


@router.get("/sla-compliance", response_model=AnalyticsResponse)
async def sla_compliance(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("sla_compliance", job_id, days_back),
        lambda: analytics.sla_compliance(job_id, days_back),
        skip_cache,
    )


@router.get("/resource-utilization-stats", response_model=AnalyticsResponse)
async def resource_utilization(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("resource_utilization", job_id, days_back),
        lambda: analytics.resource_utilization(job_id, days_back),
        skip_cache,
    )


@router.get("/error-analysis", response_model=AnalyticsResponse)
async def error_analysis(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    limit: int = Query(default=10, ge=1, le=100),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Top error codes with representative message and affected jobs."""
    return await _respond(
        cache,
        ("error_analysis", job_id, days_back, limit),
        lambda: analytics.error_analysis(job_id, days_back, limit),
        skip_cache,
    )


@router.get("/trend-data", response_model=AnalyticsResponse)
async def trend_data(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """One point per day for `daysBack` days, empty days included."""
    return await _respond(
        cache,
        ("trend", job_id, days_back),
        lambda: analytics.trend(job_id, days_back),
        skip_cache,
    )


@router.get("/by-hour", response_model=AnalyticsResponse)
async def by_hour(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("by_hour", job_id, days_back),
        lambda: analytics.by_hour(job_id, days_back),
        skip_cache,
    )


@router.get("/peak-times", response_model=AnalyticsResponse)
async def peak_times(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    limit: int = Query(default=5, ge=1, le=24),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("peak_times", job_id, days_back, limit),
        lambda: analytics.peak_times(job_id, days_back, limit),
        skip_cache,
    )


@router.get("/by-trigger", response_model=AnalyticsResponse)
async def by_trigger(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("by_trigger", job_id, days_back),
        lambda: analytics.by_trigger(job_id, days_back),
        skip_cache,
    )


@router.get("/data-quality-metrics", response_model=AnalyticsResponse)
async def data_quality(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("data_quality", job_id, days_back),
        lambda: analytics.data_quality(job_id, days_back),
        skip_cache,
    )


@router.get("/failure-patterns", response_model=AnalyticsResponse)
async def failure_patterns(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Failures clustered by error code and failing step."""
    return await _respond(
        cache,
        ("failure_patterns", job_id, days_back),
        lambda: analytics.failure_patterns(job_id, days_back),
        skip_cache,
    )


@router.get("/performance-summary", response_model=AnalyticsResponse)
async def performance_summary(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("performance_summary", job_id, days_back),
        lambda: analytics.performance_summary(job_id, days_back),
        skip_cache,
    )


@router.get("/worker-stats", response_model=AnalyticsResponse)
async def worker_stats(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 7,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("worker_stats", job_id, days_back),
        lambda: analytics.worker_stats(job_id, days_back),
        skip_cache,
    )


@router.get("/server-stats", response_model=AnalyticsResponse)
async def server_stats(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 7,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("server_stats", job_id, days_back),
        lambda: analytics.server_stats(job_id, days_back),
        skip_cache,
    )


@router.get("/step-failure-analysis", response_model=AnalyticsResponse)
async def step_failure_analysis(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("step_failures", job_id, days_back),
        lambda: analytics.step_failure_analysis(job_id, days_back),
        skip_cache,
    )


@router.get("/duration-outliers", response_model=AnalyticsResponse)
async def duration_outliers(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    limit: int = Query(default=50, ge=1, le=100),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Z-score of each finished execution's duration against the window."""
    return await _respond(
        cache,
        ("duration_outliers", job_id, days_back, limit),
        lambda: analytics.duration_outliers(job_id, days_back, limit),
        skip_cache,
    )


@router.get("/retry-analysis", response_model=AnalyticsResponse)
async def retry_analysis(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 14,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("retry_analysis", job_id, days_back),
        lambda: analytics.retry_analysis(job_id, days_back),
        skip_cache,
    )


@router.get("/concurrent-analysis", response_model=AnalyticsResponse)
async def concurrent_analysis(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 7,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("concurrency", job_id, days_back),
        lambda: analytics.concurrency(job_id, days_back),
        skip_cache,
    )


@router.get("/health-score", response_model=AnalyticsResponse)
async def health_score(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Weighted 0-100 score with each factor exposed."""
    return await _respond(
        cache,
        ("health_score", job_id, days_back),
        lambda: analytics.health_score(job_id, days_back),
        skip_cache,
    )


@router.get("/slowest", response_model=AnalyticsResponse)
async def slowest(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    limit: int = Query(default=10, ge=1, le=100),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("slowest", job_id, days_back, limit),
        lambda: analytics.slowest(job_id, days_back, limit),
        skip_cache,
    )


@router.get("/resource-issues", response_model=AnalyticsResponse)
async def resource_issues(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    limit: int = Query(default=50, ge=1, le=100),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Executions whose memory or cpu peak crossed the configured threshold."""
    return await _respond(
        cache,
        ("resource_issues", job_id, days_back, limit),
        lambda: analytics.resource_issues(job_id, days_back, limit),
        skip_cache,
    )


@router.get("/anomaly-detection", response_model=AnalyticsResponse)
async def anomaly_detection(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("anomalies", job_id, days_back),
        lambda: analytics.anomaly_detection(job_id, days_back),
        skip_cache,
    )


@router.get("/completion-forecast", response_model=AnalyticsResponse)
async def completion_forecast(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Expected completion of every running execution."""
    return await _respond(
        cache,
        ("completion_forecast", job_id),
        lambda: analytics.completion_forecast(job_id),
        skip_cache,
    )


@router.get("/sla-prediction", response_model=AnalyticsResponse)
async def sla_prediction(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Projected SLA compliance with the factors behind it."""
    return await _respond(
        cache,
        ("sla_prediction", job_id, days_back),
        lambda: analytics.sla_prediction(job_id, days_back),
        skip_cache,
    )


@router.get("/execution-distribution", response_model=AnalyticsResponse)
async def execution_distribution(
    analytics: Analytics,
    cache: Cache,
    job_id: JobFilter = None,
    days_back: DaysBack = 30,
    period: DistributionPeriod = Query(default="day"),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("execution_distribution", job_id, days_back, period),
        lambda: analytics.execution_distribution(job_id, days_back, period),
        skip_cache,
    )


# --- Per job ---


@router.get("/jobs/{job_id}/timeline", response_model=AnalyticsResponse)
async def timeline(
    job_id: int,
    queries: Queries,
    cache: Cache,
    limit: int | None = Query(default=None),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Most recent started executions of the job, oldest first."""

    async def load() -> list[TimelineItem]:
        rows = await queries.timeline(job_id, limit)
        return [
            TimelineItem(
                execution_id=row.id,
                started_at=row.started_at,
                completed_at=row.completed_at,
                status=row.execution_status,
                duration_seconds=row.duration_seconds,
            )
            for row in rows
        ]

    return await _respond(cache, ("timeline", job_id, limit), load, skip_cache)


@router.get("/jobs/{job_id}/daily-summary", response_model=AnalyticsResponse)
async def daily_summary(
    job_id: int,
    analytics: Analytics,
    cache: Cache,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("daily_summary", job_id, days_back),
        lambda: analytics.daily_summary(job_id, days_back),
        skip_cache,
    )


@router.get("/jobs/{job_id}/comparison", response_model=AnalyticsResponse)
async def comparison(
    job_id: int,
    analytics: Analytics,
    cache: Cache,
    current_period_days: int = Query(default=7, ge=1, le=365, alias="currentPeriodDays"),
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    """Current period against the preceding period of equal length."""
    return await _respond(
        cache,
        ("comparison", job_id, current_period_days),
        lambda: analytics.comparison(job_id, current_period_days),
        skip_cache,
    )


@router.get("/jobs/{job_id}/heatmap", response_model=AnalyticsResponse)
async def heatmap(
    job_id: int,
    analytics: Analytics,
    cache: Cache,
    days_back: DaysBack = 30,
    skip_cache: SkipCache = False,
) -> AnalyticsResponse:
    return await _respond(
        cache,
        ("heatmap", job_id, days_back),
        lambda: analytics.heatmap(job_id, days_back),
        skip_cache,
    )
