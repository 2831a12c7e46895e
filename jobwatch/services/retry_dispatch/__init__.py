"""Retry signal delivery with provider abstraction."""

from jobwatch.config import get_settings

from .base import BaseRetryDispatcher
from .log_only import LogOnlyRetryDispatcher
from .models import DeliveryResult, RetrySignal
from .webhook import WebhookRetryDispatcher

__all__ = [
    "BaseRetryDispatcher",
    "DeliveryResult",
    "LogOnlyRetryDispatcher",
    "RetrySignal",
    "WebhookRetryDispatcher",
    "get_retry_dispatcher",
]

_dispatcher_instance: BaseRetryDispatcher | None = None


def get_retry_dispatcher() -> BaseRetryDispatcher:
    """
    Get the configured retry dispatcher instance.

    Falls back to LogOnlyRetryDispatcher if no webhook URL is configured.
    """
    global _dispatcher_instance
    if _dispatcher_instance is not None:
        return _dispatcher_instance

    settings = get_settings()

    if not settings.retry_webhook_url:
        _dispatcher_instance = LogOnlyRetryDispatcher()
    else:
        _dispatcher_instance = WebhookRetryDispatcher(
            url=settings.retry_webhook_url,
            timeout_seconds=settings.retry_webhook_timeout,
            token=settings.retry_webhook_token,
        )

    return _dispatcher_instance


def reset_retry_dispatcher() -> None:
    """Reset the dispatcher instance. Useful for testing."""
    global _dispatcher_instance
    _dispatcher_instance = None
