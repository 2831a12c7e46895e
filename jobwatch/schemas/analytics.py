"""Analytics response shapes. Every numeric field that can lack data is nullable."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from jobwatch.models.execution import ExecutionStatus, TriggeredBy
from jobwatch.schemas.common import ReadSource


class AnalyticsResponse(BaseModel):
    success: bool = True
    data: Any
    source: ReadSource = "database"


class ExecutionStatistics(BaseModel):
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    running_executions: int = 0
    queued_executions: int = 0
    pending_executions: int = 0
    aborted_executions: int = 0
    cancelled_executions: int = 0
    sla_breaches: int = 0
    success_rate: float | None = None
    average_duration_seconds: float | None = None
    total_duration_seconds: float = 0.0


class SuccessRate(BaseModel):
    success_rate: float | None
    total_executions: int
    successful_executions: int
    failed_executions: int


class AverageDuration(BaseModel):
    average_duration_seconds: float | None
    median_duration_seconds: float | None
    p95_duration_seconds: float | None
    p99_duration_seconds: float | None
    min_duration_seconds: float | None
    max_duration_seconds: float | None
    total_executions: int


class SLACompliance(BaseModel):
    total_executions: int
    sla_breaches: int
    compliance_rate: float | None
    breach_rate: float | None
    average_duration_minutes: float | None
    sla_duration_minutes: float | None


class ResourceUtilization(BaseModel):
    average_memory_mb: float | None
    peak_memory_mb: float | None
    average_cpu_percent: float | None
    peak_cpu_percent: float | None
    total_executions: int


class ErrorAnalysisItem(BaseModel):
    error_code: str
    error_count: int
    error_message: str | None
    most_common_step: int | None
    jobs_affected: list[int]


class TrendDataPoint(BaseModel):
    date: date
    executions: int
    successful: int
    failed: int
    average_duration: float | None


class ExecutionsByHour(BaseModel):
    hour: int
    count: int
    successful: int
    failed: int


class ExecutionsByTrigger(BaseModel):
    trigger_type: TriggeredBy
    count: int
    successful: int
    failed: int


class DataQuality(BaseModel):
    average_score: float | None
    min_score: float | None
    max_score: float | None
    total_executions: int
    executions_with_score: int


class FailurePattern(BaseModel):
    pattern: str
    frequency: int
    common_causes: list[str]
    affected_jobs: list[int]


class PerformanceSummary(BaseModel):
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float | None
    average_duration_seconds: float | None
    median_duration_seconds: float | None
    p95_duration_seconds: float | None
    p99_duration_seconds: float | None
    sla_compliance_rate: float | None


class HostStats(BaseModel):
    """Per worker node or per server instance breakdown."""

    worker_node_id: str | None = None
    server_instance: str | None = None
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_duration_seconds: float | None


class DailySummary(BaseModel):
    date: date
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_duration_seconds: float | None
    sla_breaches: int


class StepFailure(BaseModel):
    step_id: int
    failure_count: int
    failure_rate: float | None
    common_errors: list[str]


class DurationOutlier(BaseModel):
    execution_id: str
    job_id: int
    duration_seconds: float
    is_outlier: bool
    z_score: float


class RetryAnalysis(BaseModel):
    total_retries: int
    successful_retries: int
    failed_retries: int
    retry_success_rate: float | None
    average_retry_count: float | None
    average_retry_duration_seconds: float | None


class TimelineItem(BaseModel):
    execution_id: str
    started_at: datetime | None
    completed_at: datetime | None
    status: ExecutionStatus
    duration_seconds: float | None


class HourlyConcurrency(BaseModel):
    hour: int
    count: int


class ConcurrencyAnalysis(BaseModel):
    max_concurrent: int
    average_concurrent: float
    peak_time: datetime | None
    concurrent_by_hour: list[HourlyConcurrency]


class HealthFactor(BaseModel):
    factor: str
    score: float | None
    weight: float


class HealthScore(BaseModel):
    health_score: float | None
    factors: list[HealthFactor]


class SlowestExecution(BaseModel):
    execution_id: str
    job_id: int
    duration_seconds: float
    started_at: datetime | None
    completed_at: datetime | None


class ResourceIssue(BaseModel):
    execution_id: str
    job_id: int
    issue_type: Literal["memory", "cpu", "both"]
    peak_memory_mb: float | None
    peak_cpu_percent: float | None


class PeriodTotals(BaseModel):
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_duration_seconds: float | None


class PeriodChanges(BaseModel):
    execution_change_percent: float | None
    success_rate_change_percent: float | None
    duration_change_percent: float | None


class ExecutionComparison(BaseModel):
    current_period: PeriodTotals
    previous_period: PeriodTotals
    changes: PeriodChanges


class CompletionForecast(BaseModel):
    execution_id: str
    job_id: int
    estimated_completion: datetime | None
    confidence: float = Field(ge=0, le=100)
    based_on: str


class HeatmapCell(BaseModel):
    date: date
    hour: int
    status: ExecutionStatus
    count: int


class ExecutionHeatmap(BaseModel):
    data: list[HeatmapCell]


class Anomaly(BaseModel):
    execution_id: str
    job_id: int
    anomaly_type: str
    severity: Literal["low", "medium", "high"]
    description: str


class AnomalyDetection(BaseModel):
    anomalies: list[Anomaly]


class PredictionFactor(BaseModel):
    factor: str
    impact: float


class SLAPrediction(BaseModel):
    predicted_compliance_rate: float | None
    confidence: float = Field(ge=0, le=100)
    factors: list[PredictionFactor]


class ExecutionDistribution(BaseModel):
    period: str
    count: int
    successful: int
    failed: int
