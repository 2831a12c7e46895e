"""HTTP webhook dispatcher for retry signals."""

import httpx

from jobwatch.core.logging import get_logger
from jobwatch.core.retry import RetryConfig, retry_with_backoff

from .base import BaseRetryDispatcher
from .models import DeliveryResult, RetrySignal

logger = get_logger(__name__)


class WebhookRetryDispatcher(BaseRetryDispatcher):
    """POSTs each signal as JSON to the scheduler's trigger endpoint."""

    provider_name = "webhook"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        token: str = "",
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize webhook dispatcher.

        Args:
            url: Scheduler endpoint receiving retry signals
            timeout_seconds: HTTP request timeout
            token: Optional bearer token
            retry_config: Backoff for transient failures (network errors, 5xx)
            transport: Custom httpx transport (tests)
        """
        self.url = url
        self.timeout = timeout_seconds
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            backoff_base=0.5,
            retryable_exceptions=(httpx.TransportError, httpx.HTTPStatusError),
        )
        self.transport = transport

    async def dispatch(self, signal: RetrySignal) -> DeliveryResult:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await self._dispatch(client, signal)

    async def dispatch_batch(self, signals: list[RetrySignal]) -> list[DeliveryResult]:
        """Deliver signals over one connection pool."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return [await self._dispatch(client, signal) for signal in signals]

    async def _dispatch(self, client: httpx.AsyncClient, signal: RetrySignal) -> DeliveryResult:
        headers = {**self.headers, "Idempotency-Key": signal.idempotency_key}

        async def post() -> httpx.Response:
            response = await client.post(
                self.url, json=signal.model_dump(mode="json"), headers=headers
            )
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await retry_with_backoff(
                post,
                config=self.retry_config,
                operation_name=f"retry_signal:{signal.original_execution_id}",
            )
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            logger.bind(
                execution_id=signal.original_execution_id,
                job_id=signal.job_id,
                error=str(e),
            ).error("retry_signal_failed")
            return self._failed(signal, str(e))

        if response.is_success:
            logger.bind(
                execution_id=signal.original_execution_id,
                job_id=signal.job_id,
                status=response.status_code,
            ).info("retry_signal_delivered")
            return DeliveryResult(
                execution_id=signal.original_execution_id,
                delivered=True,
                provider=self.provider_name,
            )

        # 4xx: the scheduler refused the request, retrying would not help
        logger.bind(
            execution_id=signal.original_execution_id,
            job_id=signal.job_id,
            status=response.status_code,
        ).error("retry_signal_rejected")
        return self._failed(signal, f"HTTP {response.status_code}")

    def _failed(self, signal: RetrySignal, error: str) -> DeliveryResult:
        return DeliveryResult(
            execution_id=signal.original_execution_id,
            delivered=False,
            provider=self.provider_name,
            error=error,
        )
