"""Log-only dispatcher - used when no scheduler webhook is configured."""

from jobwatch.core.logging import get_logger

from .base import BaseRetryDispatcher
from .models import DeliveryResult, RetrySignal

logger = get_logger(__name__)


class LogOnlyRetryDispatcher(BaseRetryDispatcher):
    """
    Records retry signals in the log and reports them delivered.

    A scheduler that tails the structured log can pick them up from there.
    """

    provider_name = "log"

    async def dispatch(self, signal: RetrySignal) -> DeliveryResult:
        logger.bind(**signal.model_dump(mode="json")).info("retry_signal_logged")
        return DeliveryResult(
            execution_id=signal.original_execution_id,
            delivered=True,
            provider=self.provider_name,
        )
