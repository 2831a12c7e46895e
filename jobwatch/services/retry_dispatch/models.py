"""Retry signal models."""

from pydantic import BaseModel

from jobwatch.models.execution import TriggeredBy


class RetrySignal(BaseModel):
    """Request for the scheduler to run a job again on behalf of a failed execution."""

    job_id: int
    original_execution_id: str
    requested_by_user_id: int | None = None
    triggered_by: TriggeredBy = TriggeredBy.RETRY
    correlation_id: str
    # Stable per original execution so the scheduler can drop duplicate deliveries
    idempotency_key: str

    @classmethod
    def for_execution(
        cls,
        job_id: int,
        execution_id: str,
        correlation_id: str | None,
        user_id: int | None,
    ) -> "RetrySignal":
        return cls(
            job_id=job_id,
            original_execution_id=execution_id,
            requested_by_user_id=user_id,
            correlation_id=correlation_id or execution_id,
            idempotency_key=f"retry:{execution_id}",
        )


class DeliveryResult(BaseModel):
    """Outcome of delivering one signal."""

    execution_id: str
    delivered: bool
    provider: str
    error: str | None = None
