"""
Analytics aggregation over the execution store.

Each operation loads one windowed snapshot (a single SELECT) and aggregates
it in memory, so a report never holds locks and never sees a half-applied
mutation. Windows are on `created_at`; archived executions are included
since archival does not remove history.

Conventions:
- "successful" is `success`; "failed" is `failure` or `timeout`
- success rate is successful / (successful + failed), None when both are zero
- durations come from terminal executions with a recorded duration
"""

from collections import Counter, defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import AppConfig, get_config
from jobwatch.core.datetime_utils import date_series, elapsed_seconds, get_cutoff, utc_now
from jobwatch.core.logging import get_logger
from jobwatch.metrics.durations import (
    completion_forecast,
    duration_stability,
    duration_summary,
    health_score,
    is_near_miss,
    percent_change,
    rate,
    severity_for,
    sla_prediction,
    z_scores,
)
from jobwatch.models.execution import (
    FAILED_STATUSES,
    TERMINAL_STATUSES,
    ExecutionStatus,
    JobExecution,
    TriggeredBy,
)
from jobwatch.schemas.analytics import (
    AverageDuration,
    Anomaly,
    AnomalyDetection,
    CompletionForecast,
    ConcurrencyAnalysis,
    DailySummary,
    DataQuality,
    DurationOutlier,
    ErrorAnalysisItem,
    ExecutionComparison,
    ExecutionDistribution,
    ExecutionHeatmap,
    ExecutionsByHour,
    ExecutionsByTrigger,
    ExecutionStatistics,
    FailurePattern,
    HealthFactor,
    HealthScore,
    HeatmapCell,
    HostStats,
    HourlyConcurrency,
    PerformanceSummary,
    PeriodChanges,
    PeriodTotals,
    PredictionFactor,
    ResourceIssue,
    ResourceUtilization,
    RetryAnalysis,
    SLACompliance,
    SLAPrediction,
    SlowestExecution,
    StepFailure,
    SuccessRate,
    TrendDataPoint,
)
from jobwatch.services.sla import effective_sla_breached

logger = get_logger(__name__)

UNKNOWN_ERROR = "UNKNOWN"
FORECAST_HISTORY_DAYS = 90


def _is_success(row: JobExecution) -> bool:
    return row.execution_status == ExecutionStatus.SUCCESS


def _is_failed(row: JobExecution) -> bool:
    return row.execution_status in FAILED_STATUSES


def _durations(rows: Iterable[JobExecution]) -> list[float]:
    return [
        row.duration_seconds
        for row in rows
        if row.execution_status in TERMINAL_STATUSES and row.duration_seconds is not None
    ]


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 3)


def _tally(rows: list[JobExecution]) -> tuple[int, int, int, float | None]:
    """(total, successful, failed, mean duration) for a group of executions."""
    successful = sum(1 for row in rows if _is_success(row))
    failed = sum(1 for row in rows if _is_failed(row))
    return len(rows), successful, failed, _mean(_durations(rows))


def _group(
    rows: Iterable[JobExecution], key: Callable[[JobExecution], Any]
) -> dict[Any, list[JobExecution]]:
    groups: dict[Any, list[JobExecution]] = defaultdict(list)
    for row in rows:
        value = key(row)
        if value is not None:
            groups[value].append(row)
    return groups


def failure_pattern_key(error_code: str | None, step_id: int | None) -> str:
    """Cluster key for failures: same error raised at the same step."""
    return f"{error_code or UNKNOWN_ERROR}@step:{step_id if step_id is not None else '-'}"


DistributionPeriod = Literal["day", "week", "month"]


def period_label(day: date, period: DistributionPeriod) -> str:
    """2026-10-19, 2026-W43 (ISO week) or 2026-10."""
    if period == "week":
        year, week, _ = day.isocalendar()
        return f"{year}-W{week:02d}"
    if period == "month":
        return f"{day.year:04d}-{day.month:02d}"
    return day.isoformat()


class ExecutionAnalytics:
    """Read-only aggregations; every method is safe on an empty window."""

    def __init__(self, db: AsyncSession, config: AppConfig | None = None) -> None:
        self.db = db
        self.config = config or get_config()

    async def _window(
        self,
        days_back: int,
        job_id: int | None = None,
    ) -> list[JobExecution]:
        query = select(JobExecution).where(JobExecution.created_at >= get_cutoff(days=days_back))
        if job_id is not None:
            query = query.where(JobExecution.job_id == job_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _between(
        self, start: datetime, end: datetime, job_id: int | None
    ) -> list[JobExecution]:
        query = select(JobExecution).where(
            JobExecution.created_at >= start, JobExecution.created_at < end
        )
        if job_id is not None:
            query = query.where(JobExecution.job_id == job_id)
        return list((await self.db.execute(query)).scalars().all())

    # ------------------------------------------------------------------
    # Counts, rates and durations
    # ------------------------------------------------------------------

    async def stats(self, job_id: int | None = None, days_back: int = 30) -> ExecutionStatistics:
        rows = await self._window(days_back, job_id)
        by_status = Counter(row.execution_status for row in rows)
        successful = by_status[ExecutionStatus.SUCCESS]
        failed = sum(by_status[status] for status in FAILED_STATUSES)
        durations = _durations(rows)
        return ExecutionStatistics(
            total_executions=len(rows),
            successful_executions=successful,
            failed_executions=failed,
            running_executions=by_status[ExecutionStatus.RUNNING],
            queued_executions=by_status[ExecutionStatus.QUEUED],
            pending_executions=by_status[ExecutionStatus.PENDING],
            aborted_executions=by_status[ExecutionStatus.ABORTED],
            cancelled_executions=by_status[ExecutionStatus.CANCELLED],
            sla_breaches=self._breaches(rows),
            success_rate=rate(successful, successful + failed),
            average_duration_seconds=_mean(durations),
            total_duration_seconds=round(sum(durations), 3),
        )

    async def success_rate(self, job_id: int | None = None, days_back: int = 30) -> SuccessRate:
        rows = await self._window(days_back, job_id)
        _, successful, failed, _ = _tally(rows)
        return SuccessRate(
            success_rate=rate(successful, successful + failed),
            total_executions=len(rows),
            successful_executions=successful,
            failed_executions=failed,
        )

    async def average_duration(
        self, job_id: int | None = None, days_back: int = 30
    ) -> AverageDuration:
        durations = _durations(await self._window(days_back, job_id))
        summary = duration_summary(durations)
        return AverageDuration(
            average_duration_seconds=summary["average"],
            median_duration_seconds=summary["median"],
            p95_duration_seconds=summary["p95"],
            p99_duration_seconds=summary["p99"],
            min_duration_seconds=summary["min"],
            max_duration_seconds=summary["max"],
            total_executions=len(durations),
        )

    def _breaches(self, rows: Iterable[JobExecution]) -> int:
        """Flagged executions plus running ones already past their SLA."""
        now = utc_now()
        return sum(1 for row in rows if effective_sla_breached(row, self.config.jobs, now))

    def _sla_rows(self, rows: list[JobExecution]) -> list[JobExecution]:
        """Finished executions whose job has an SLA configured."""
        return [
            row
            for row in rows
            if row.execution_status in TERMINAL_STATUSES
            and self.config.jobs.policy_for(row.job_id).sla_seconds is not None
        ]

    async def sla_compliance(
        self, job_id: int | None = None, days_back: int = 30
    ) -> SLACompliance:
        rows = self._sla_rows(await self._window(days_back, job_id))
        breaches = self._breaches(rows)
        average = _mean(_durations(rows))
        jobs = self.config.jobs
        policy = jobs.policy_for(job_id) if job_id is not None else jobs.defaults
        return SLACompliance(
            total_executions=len(rows),
            sla_breaches=breaches,
            compliance_rate=rate(len(rows) - breaches, len(rows)),
            breach_rate=rate(breaches, len(rows)),
            average_duration_minutes=round(average / 60, 2) if average is not None else None,
            sla_duration_minutes=policy.sla_minutes,
        )

    async def resource_utilization(
        self, job_id: int | None = None, days_back: int = 30
    ) -> ResourceUtilization:
        rows = await self._window(days_back, job_id)
        memory = [row.peak_memory_mb for row in rows if row.peak_memory_mb is not None]
        cpu = [row.peak_cpu_percent for row in rows if row.peak_cpu_percent is not None]
        return ResourceUtilization(
            average_memory_mb=_mean(memory),
            peak_memory_mb=max(memory) if memory else None,
            average_cpu_percent=_mean(cpu),
            peak_cpu_percent=max(cpu) if cpu else None,
            total_executions=len(rows),
        )

    async def data_quality(self, job_id: int | None = None, days_back: int = 30) -> DataQuality:
        rows = await self._window(days_back, job_id)
        scores = [row.data_quality_score for row in rows if row.data_quality_score is not None]
        return DataQuality(
            average_score=_mean(scores),
            min_score=min(scores) if scores else None,
            max_score=max(scores) if scores else None,
            total_executions=len(rows),
            executions_with_score=len(scores),
        )

    async def performance_summary(
        self, job_id: int | None = None, days_back: int = 30
    ) -> PerformanceSummary:
        rows = await self._window(days_back, job_id)
        total, successful, failed, _ = _tally(rows)
        summary = duration_summary(_durations(rows))
        sla_rows = self._sla_rows(rows)
        breaches = self._breaches(sla_rows)
        return PerformanceSummary(
            total_executions=total,
            successful_executions=successful,
            failed_executions=failed,
            success_rate=rate(successful, successful + failed),
            average_duration_seconds=summary["average"],
            median_duration_seconds=summary["median"],
            p95_duration_seconds=summary["p95"],
            p99_duration_seconds=summary["p99"],
            sla_compliance_rate=rate(len(sla_rows) - breaches, len(sla_rows)),
        )

    # ------------------------------------------------------------------
    # Series and breakdowns
    # ------------------------------------------------------------------

    async def trend(self, job_id: int | None = None, days_back: int = 30) -> list[TrendDataPoint]:
        """One point per calendar day, zero-count days included, oldest first."""
        by_day = _group(await self._window(days_back, job_id), lambda row: row.execution_date)
        points = []
        for day in date_series(days_back):
            total, successful, failed, average = _tally(by_day.get(day, []))
            points.append(
                TrendDataPoint(
                    date=day,
                    executions=total,
                    successful=successful,
                    failed=failed,
                    average_duration=average,
                )
            )
        return points

    async def execution_distribution(
        self,
        job_id: int | None = None,
        days_back: int = 30,
        period: DistributionPeriod = "day",
    ) -> list[ExecutionDistribution]:
        """Counts per day, ISO week or month of execution_date; empty periods are omitted."""
        groups = _group(
            await self._window(days_back, job_id),
            lambda row: period_label(row.execution_date, period),
        )
        result = []
        for label in sorted(groups):
            total, successful, failed, _ = _tally(groups[label])
            result.append(
                ExecutionDistribution(
                    period=label, count=total, successful=successful, failed=failed
                )
            )
        return result

    async def daily_summary(self, job_id: int, days_back: int = 30) -> list[DailySummary]:
        by_day = _group(await self._window(days_back, job_id), lambda row: row.execution_date)
        summaries = []
        for day in date_series(days_back):
            rows = by_day.get(day, [])
            total, successful, failed, average = _tally(rows)
            summaries.append(
                DailySummary(
                    date=day,
                    total_executions=total,
                    successful_executions=successful,
                    failed_executions=failed,
                    average_duration_seconds=average,
                    sla_breaches=self._breaches(rows),
                )
            )
        return summaries

    async def by_hour(
        self, job_id: int | None = None, days_back: int = 30
    ) -> list[ExecutionsByHour]:
        """All 24 hours of the day (UTC), by start time."""
        rows = await self._window(days_back, job_id)
        by_hour = _group(rows, lambda row: row.started_at.hour if row.started_at else None)
        result = []
        for hour in range(24):
            total, successful, failed, _ = _tally(by_hour.get(hour, []))
            result.append(
                ExecutionsByHour(hour=hour, count=total, successful=successful, failed=failed)
            )
        return result

    async def peak_times(
        self, job_id: int | None = None, days_back: int = 30, limit: int = 5
    ) -> list[ExecutionsByHour]:
        hours = [hour for hour in await self.by_hour(job_id, days_back) if hour.count > 0]
        hours.sort(key=lambda hour: (-hour.count, hour.hour))
        return hours[:limit]

    async def by_trigger(
        self, job_id: int | None = None, days_back: int = 30
    ) -> list[ExecutionsByTrigger]:
        groups = _group(await self._window(days_back, job_id), lambda row: row.triggered_by)
        result = []
        for trigger in TriggeredBy:
            if trigger not in groups:
                continue
            total, successful, failed, _ = _tally(groups[trigger])
            result.append(
                ExecutionsByTrigger(
                    trigger_type=trigger, count=total, successful=successful, failed=failed
                )
            )
        return result

    async def _host_stats(
        self, attribute: str, days_back: int, job_id: int | None
    ) -> list[HostStats]:
        groups = _group(await self._window(days_back, job_id), lambda row: getattr(row, attribute))
        stats = []
        for host in sorted(groups):
            total, successful, failed, average = _tally(groups[host])
            stats.append(
                HostStats(
                    **{attribute: host},
                    total_executions=total,
                    successful_executions=successful,
                    failed_executions=failed,
                    average_duration_seconds=average,
                )
            )
        return stats

    async def worker_stats(self, job_id: int | None = None, days_back: int = 7) -> list[HostStats]:
        return await self._host_stats("worker_node_id", days_back, job_id)

    async def server_stats(self, job_id: int | None = None, days_back: int = 7) -> list[HostStats]:
        return await self._host_stats("server_instance", days_back, job_id)

    async def heatmap(self, job_id: int, days_back: int = 30) -> ExecutionHeatmap:
        rows = await self._window(days_back, job_id)
        cells = Counter(
            (row.started_at.date(), row.started_at.hour, row.execution_status)
            for row in rows
            if row.started_at is not None
        )
        return ExecutionHeatmap(
            data=[
                HeatmapCell(date=day, hour=hour, status=status, count=count)
                for (day, hour, status), count in sorted(
                    cells.items(), key=lambda item: (item[0][0], item[0][1], item[0][2].value)
                )
            ]
        )

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    async def error_analysis(
        self, job_id: int | None = None, days_back: int = 30, limit: int = 10
    ) -> list[ErrorAnalysisItem]:
        failed = [row for row in await self._window(days_back, job_id) if _is_failed(row)]
        groups = _group(failed, lambda row: row.error_code or UNKNOWN_ERROR)
        items = []
        for code, rows in groups.items():
            messages = Counter(row.error_message for row in rows if row.error_message)
            steps = Counter(row.error_step_id for row in rows if row.error_step_id is not None)
            items.append(
                ErrorAnalysisItem(
                    error_code=code,
                    error_count=len(rows),
                    error_message=messages.most_common(1)[0][0] if messages else None,
                    most_common_step=steps.most_common(1)[0][0] if steps else None,
                    jobs_affected=sorted({row.job_id for row in rows}),
                )
            )
        items.sort(key=lambda item: (-item.error_count, item.error_code))
        return items[:limit]

    async def failure_patterns(
        self, job_id: int | None = None, days_back: int = 30
    ) -> list[FailurePattern]:
        failed = [row for row in await self._window(days_back, job_id) if _is_failed(row)]
        groups = _group(failed, lambda row: failure_pattern_key(row.error_code, row.error_step_id))
        patterns = []
        for key, rows in groups.items():
            causes = Counter(row.error_message for row in rows if row.error_message)
            patterns.append(
                FailurePattern(
                    pattern=key,
                    frequency=len(rows),
                    common_causes=[message for message, _ in causes.most_common(3)],
                    affected_jobs=sorted({row.job_id for row in rows}),
                )
            )
        patterns.sort(key=lambda pattern: (-pattern.frequency, pattern.pattern))
        return patterns

    async def step_failure_analysis(
        self, job_id: int | None = None, days_back: int = 30
    ) -> list[StepFailure]:
        failed = [row for row in await self._window(days_back, job_id) if _is_failed(row)]
        groups = _group(failed, lambda row: row.error_step_id)
        result = []
        for step_id, rows in groups.items():
            errors = Counter(row.error_code or row.error_message or UNKNOWN_ERROR for row in rows)
            result.append(
                StepFailure(
                    step_id=step_id,
                    failure_count=len(rows),
                    failure_rate=rate(len(rows), len(failed)),
                    common_errors=[error for error, _ in errors.most_common(3)],
                )
            )
        result.sort(key=lambda step: (-step.failure_count, step.step_id))
        return result

    async def retry_analysis(self, job_id: int | None = None, days_back: int = 14) -> RetryAnalysis:
        retries = [
            row
            for row in await self._window(days_back, job_id)
            if row.triggered_by == TriggeredBy.RETRY
        ]
        _, successful, failed, _ = _tally(retries)
        chains = Counter(row.correlation_id or row.id for row in retries)
        return RetryAnalysis(
            total_retries=len(retries),
            successful_retries=successful,
            failed_retries=failed,
            retry_success_rate=rate(successful, successful + failed),
            average_retry_count=round(len(retries) / len(chains), 2) if chains else None,
            average_retry_duration_seconds=_mean(_durations(retries)),
        )

    # ------------------------------------------------------------------
    # Outliers, health and forecasting
    # ------------------------------------------------------------------

    async def duration_outliers(
        self, job_id: int | None = None, days_back: int = 30, limit: int = 50
    ) -> list[DurationOutlier]:
        rows = [
            row
            for row in await self._window(days_back, job_id)
            if row.execution_status in TERMINAL_STATUSES and row.duration_seconds is not None
        ]
        threshold = self.config.analytics.outlier_z_threshold
        scores = z_scores([row.duration_seconds for row in rows])
        outliers = [
            DurationOutlier(
                execution_id=row.id,
                job_id=row.job_id,
                duration_seconds=row.duration_seconds,
                is_outlier=abs(z) > threshold,
                z_score=round(z, 3),
            )
            for row, z in zip(rows, scores, strict=True)
        ]
        outliers.sort(key=lambda item: (-abs(item.z_score), item.execution_id))
        return outliers[:limit]

    async def health_score(self, job_id: int | None = None, days_back: int = 30) -> HealthScore:
        rows = await self._window(days_back, job_id)
        _, successful, failed, _ = _tally(rows)
        sla_rows = self._sla_rows(rows)
        breaches = self._breaches(sla_rows)

        factors = {
            "success_rate": rate(successful, successful + failed),
            "sla_compliance": rate(len(sla_rows) - breaches, len(sla_rows)),
            "duration_stability": duration_stability(_durations(rows)),
        }
        weights = self.config.analytics.health_weights
        return HealthScore(
            health_score=health_score(factors, weights),
            factors=[
                HealthFactor(factor=name, score=score, weight=weights.get(name, 0.0))
                for name, score in factors.items()
            ],
        )

    async def slowest(
        self, job_id: int | None = None, days_back: int = 30, limit: int = 10
    ) -> list[SlowestExecution]:
        rows = [
            row
            for row in await self._window(days_back, job_id)
            if row.execution_status in TERMINAL_STATUSES and row.duration_seconds is not None
        ]
        rows.sort(key=lambda row: (-row.duration_seconds, row.id))
        return [
            SlowestExecution(
                execution_id=row.id,
                job_id=row.job_id,
                duration_seconds=row.duration_seconds,
                started_at=row.started_at,
                completed_at=row.completed_at,
            )
            for row in rows[:limit]
        ]

    async def resource_issues(
        self, job_id: int | None = None, days_back: int = 30, limit: int = 50
    ) -> list[ResourceIssue]:
        memory_limit = self.config.analytics.memory_threshold_mb
        cpu_limit = self.config.analytics.cpu_threshold_percent
        issues = []
        for row in await self._window(days_back, job_id):
            memory = row.peak_memory_mb is not None and row.peak_memory_mb > memory_limit
            cpu = row.peak_cpu_percent is not None and row.peak_cpu_percent > cpu_limit
            if not (memory or cpu):
                continue
            issues.append(
                ResourceIssue(
                    execution_id=row.id,
                    job_id=row.job_id,
                    issue_type="both" if memory and cpu else "memory" if memory else "cpu",
                    peak_memory_mb=row.peak_memory_mb,
                    peak_cpu_percent=row.peak_cpu_percent,
                )
            )
        issues.sort(key=lambda issue: (-(issue.peak_memory_mb or 0), issue.execution_id))
        return issues[:limit]

    async def anomaly_detection(
        self, job_id: int | None = None, days_back: int = 30
    ) -> AnomalyDetection:
        """Executions whose duration or resource peaks sit beyond the anomaly z threshold."""
        rows = await self._window(days_back, job_id)
        threshold = self.config.analytics.anomaly_z_threshold
        anomalies: list[Anomaly] = []

        checks = (
            ("duration", "duration_seconds", "s"),
            ("memory", "peak_memory_mb", "MB"),
            ("cpu", "peak_cpu_percent", "%"),
        )
        for anomaly_type, attribute, unit in checks:
            sample = [row for row in rows if getattr(row, attribute) is not None]
            values = [getattr(row, attribute) for row in sample]
            if len(values) < 2:
                continue
            mean = sum(values) / len(values)
            for row, z in zip(sample, z_scores(values), strict=True):
                if abs(z) <= threshold:
                    continue
                anomalies.append(
                    Anomaly(
                        execution_id=row.id,
                        job_id=row.job_id,
                        anomaly_type=anomaly_type,
                        severity=severity_for(z, threshold),
                        description=(
                            f"{attribute}={getattr(row, attribute):g}{unit} vs mean "
                            f"{mean:.1f}{unit} (z={z:.2f})"
                        ),
                    )
                )

        if anomalies:
            logger.bind(job_id=job_id, count=len(anomalies)).debug("anomalies_detected")
        return AnomalyDetection(anomalies=anomalies)

    async def completion_forecast(self, job_id: int | None = None) -> list[CompletionForecast]:
        """Expected finish time for every running execution."""
        query = select(JobExecution).where(
            JobExecution.execution_status == ExecutionStatus.RUNNING,
            JobExecution.archived.is_(False),
        )
        if job_id is not None:
            query = query.where(JobExecution.job_id == job_id)
        running = list((await self.db.execute(query)).scalars().all())
        if not running:
            return []

        history_query = select(JobExecution.job_id, JobExecution.duration_seconds).where(
            JobExecution.execution_status == ExecutionStatus.SUCCESS,
            JobExecution.duration_seconds.is_not(None),
            JobExecution.job_id.in_({row.job_id for row in running}),
            JobExecution.created_at >= get_cutoff(days=FORECAST_HISTORY_DAYS),
        )
        history: dict[int, list[float]] = defaultdict(list)
        for job, duration in (await self.db.execute(history_query)).all():
            history[job].append(duration)

        now = utc_now()
        forecasts = []
        for row in running:
            elapsed = elapsed_seconds(row.started_at, now) if row.started_at else 0.0
            remaining, confidence, based_on = completion_forecast(
                elapsed, history.get(row.job_id, []), row.steps_total, row.steps_completed
            )
            forecasts.append(
                CompletionForecast(
                    execution_id=row.id,
                    job_id=row.job_id,
                    estimated_completion=(
                        now + timedelta(seconds=remaining) if remaining is not None else None
                    ),
                    confidence=confidence,
                    based_on=based_on,
                )
            )
        return forecasts

    async def sla_prediction(
        self, job_id: int | None = None, days_back: int = 30
    ) -> SLAPrediction:
        """
        Projected SLA compliance, from finished executions of jobs with an SLA.

        The window is split in half: compliance in the recent half is the
        baseline, the change from the earlier half is the trend, and recent
        runs that finished within the SLA but used more than 80% of it are
        the near misses.
        """
        rows = self._sla_rows(await self._window(days_back, job_id))
        midpoint = utc_now() - timedelta(days=days_back / 2)
        earlier = [row for row in rows if row.created_at < midpoint]
        recent = [row for row in rows if row.created_at >= midpoint]

        def compliance(group: list[JobExecution]) -> float | None:
            return rate(len(group) - self._breaches(group), len(group))

        basis = recent or earlier
        near_misses = sum(
            1
            for row in basis
            if not row.sla_breached
            and is_near_miss(
                row.duration_seconds, self.config.jobs.policy_for(row.job_id).sla_seconds
            )
        )
        predicted, confidence, factors = sla_prediction(
            compliance(earlier), compliance(recent), rate(near_misses, len(basis)), len(rows)
        )
        return SLAPrediction(
            predicted_compliance_rate=predicted,
            confidence=confidence,
            factors=[PredictionFactor(factor=name, impact=impact) for name, impact in factors],
        )

    # ------------------------------------------------------------------
    # Concurrency and period comparison
    # ------------------------------------------------------------------

    async def concurrency(
        self, job_id: int | None = None, days_back: int = 7
    ) -> ConcurrencyAnalysis:
        """
        Sweep over start/end events of every started execution in the window.

        Running executions count as busy until now. average_concurrent is the
        time-weighted mean between the first start and the last end.
        """
        now = utc_now()
        events: list[tuple[datetime, int]] = []
        for row in await self._window(days_back, job_id):
            if row.started_at is None:
                continue
            end = row.completed_at or now
            events.append((row.started_at, 1))
            events.append((max(end, row.started_at), -1))

        if not events:
            return ConcurrencyAnalysis(
                max_concurrent=0,
                average_concurrent=0.0,
                peak_time=None,
                concurrent_by_hour=[HourlyConcurrency(hour=h, count=0) for h in range(24)],
            )

        # Ends sort before starts at the same instant
        events.sort(key=lambda event: (event[0], event[1]))
        current = 0
        peak, peak_time = 0, None
        hourly = [0] * 24
        busy_seconds = 0.0
        previous = events[0][0]
        for moment, delta in events:
            busy_seconds += current * (moment - previous).total_seconds()
            previous = moment
            current += delta
            hourly[moment.hour] = max(hourly[moment.hour], current)
            if current > peak:
                peak, peak_time = current, moment

        span = (events[-1][0] - events[0][0]).total_seconds()
        average = busy_seconds / span if span > 0 else float(peak)
        return ConcurrencyAnalysis(
            max_concurrent=peak,
            average_concurrent=round(average, 2),
            peak_time=peak_time,
            concurrent_by_hour=[HourlyConcurrency(hour=h, count=c) for h, c in enumerate(hourly)],
        )

    async def comparison(self, job_id: int, current_period_days: int = 7) -> ExecutionComparison:
        """Current period against the equally long period right before it."""
        now = utc_now()
        period = timedelta(days=current_period_days)
        current_rows = await self._between(now - period, now + timedelta(seconds=1), job_id)
        previous_rows = await self._between(now - 2 * period, now - period, job_id)

        def totals(rows: list[JobExecution]) -> PeriodTotals:
            total, successful, failed, average = _tally(rows)
            return PeriodTotals(
                total_executions=total,
                successful_executions=successful,
                failed_executions=failed,
                average_duration_seconds=average,
            )

        current, previous = totals(current_rows), totals(previous_rows)
        current_rate = rate(
            current.successful_executions,
            current.successful_executions + current.failed_executions,
        )
        previous_rate = rate(
            previous.successful_executions,
            previous.successful_executions + previous.failed_executions,
        )
        return ExecutionComparison(
            current_period=current,
            previous_period=previous,
            changes=PeriodChanges(
                execution_change_percent=percent_change(
                    current.total_executions, previous.total_executions
                ),
                success_rate_change_percent=percent_change(current_rate, previous_rate),
                duration_change_percent=percent_change(
                    current.average_duration_seconds, previous.average_duration_seconds
                ),
            ),
        )
