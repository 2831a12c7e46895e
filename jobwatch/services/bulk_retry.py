"""
Bulk retry of failed executions.

Only emits retry signals; the failed rows themselves are never modified.
New executions appear once the scheduler calls create with
triggered_by=retry.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import Settings, get_settings
from jobwatch.core.datetime_utils import get_cutoff
from jobwatch.core.errors import DependencyError, ValidationError
from jobwatch.core.logging import get_logger
from jobwatch.models.execution import FAILED_STATUSES, JobExecution
from jobwatch.services.retry_dispatch import (
    BaseRetryDispatcher,
    DeliveryResult,
    RetrySignal,
    get_retry_dispatcher,
)

logger = get_logger(__name__)


class BulkRetryOrchestrator:
    """Finds failed executions of a job and asks the scheduler to rerun them."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: BaseRetryDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher or get_retry_dispatcher()
        self.settings = settings or get_settings()

    async def retry_failed(
        self,
        job_id: int,
        days_back: int = 7,
        user_id: int | None = None,
    ) -> dict:
        """
        Signal a retry for every failed, unarchived execution of the job in the window.

        Safe to call again: each signal carries the idempotency key
        `retry:<execution_id>`.

        Raises:
            DependencyError: Nothing could be delivered
        """
        if not job_id:
            raise ValidationError("Job ID is required", field="jobId")

        cutoff = get_cutoff(days=days_back)
        batch_size = self.settings.bulk_batch_size
        outcomes: list[DeliveryResult] = []
        last_id = ""

        while True:
            query = (
                select(JobExecution.id, JobExecution.correlation_id)
                .where(
                    JobExecution.job_id == job_id,
                    JobExecution.execution_status.in_(FAILED_STATUSES),
                    JobExecution.archived.is_(False),
                    JobExecution.created_at >= cutoff,
                    JobExecution.id > last_id,
                )
                .order_by(JobExecution.id)
                .limit(batch_size)
            )
            rows = (await self.db.execute(query)).all()
            if not rows:
                break

            signals = [
                RetrySignal.for_execution(job_id, execution_id, correlation_id, user_id)
                for execution_id, correlation_id in rows
            ]
            outcomes.extend(await self.dispatcher.dispatch_batch(signals))
            last_id = rows[-1][0]
            logger.bind(
                job_id=job_id,
                batch=len(rows),
                provider=self.dispatcher.provider_name,
            ).info("retry_failed_batch")
            if len(rows) < batch_size:
                break

        signalled = sum(1 for outcome in outcomes if outcome.delivered)
        failed = len(outcomes) - signalled
        logger.bind(
            job_id=job_id,
            days_back=days_back,
            user_id=user_id,
            matched=len(outcomes),
            signalled=signalled,
            failed=failed,
        ).info("retry_failed_complete")

        if outcomes and signalled == 0:
            raise DependencyError(
                "Retry signals could not be delivered to the scheduler",
                job_id=job_id,
                failed=failed,
                provider=self.dispatcher.provider_name,
            )

        return {
            "job_id": job_id,
            "matched": len(outcomes),
            "signalled": signalled,
            "failed": failed,
            "outcomes": [
                {
                    "execution_id": outcome.execution_id,
                    "delivered": outcome.delivered,
                    "error": outcome.error,
                }
                for outcome in outcomes
            ],
        }
