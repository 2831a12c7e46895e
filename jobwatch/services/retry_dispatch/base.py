"""Abstract base class for retry signal dispatchers."""

from abc import ABC, abstractmethod

from .models import DeliveryResult, RetrySignal


class BaseRetryDispatcher(ABC):
    """Delivers retry signals to the scheduler that owns re-execution."""

    provider_name: str = "unknown"

    @abstractmethod
    async def dispatch(self, signal: RetrySignal) -> DeliveryResult:
        """
        Deliver a single retry signal.

        Delivery failures are reported in the result, not raised.

        Args:
            signal: The retry request

        Returns:
            DeliveryResult for the original execution
        """
        pass

    async def dispatch_batch(self, signals: list[RetrySignal]) -> list[DeliveryResult]:
        """Deliver signals one by one, in order."""
        return [await self.dispatch(signal) for signal in signals]
