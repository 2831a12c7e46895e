"""Tests for retry signal dispatchers."""

import httpx
import pytest

from jobwatch.config import Settings
from jobwatch.core.retry import RetryConfig
from jobwatch.models.execution import TriggeredBy
from jobwatch.services import retry_dispatch
from jobwatch.services.retry_dispatch import (
    LogOnlyRetryDispatcher,
    RetrySignal,
    WebhookRetryDispatcher,
    get_retry_dispatcher,
    reset_retry_dispatcher,
)

pytestmark = pytest.mark.asyncio

WEBHOOK_URL = "http://scheduler.test/retries"

FAST_RETRY = RetryConfig(
    max_attempts=2,
    backoff_base=0,
    jitter=False,
    retryable_exceptions=(httpx.TransportError, httpx.HTTPStatusError),
)


def make_signal(execution_id: str = "exec-1") -> RetrySignal:
    return RetrySignal.for_execution(
        job_id=42, execution_id=execution_id, correlation_id=None, user_id=7
    )


def make_dispatcher(handler, token: str = "") -> WebhookRetryDispatcher:
    return WebhookRetryDispatcher(
        url=WEBHOOK_URL,
        token=token,
        retry_config=FAST_RETRY,
        transport=httpx.MockTransport(handler),
    )


class TestRetrySignal:
    async def test_for_execution(self):
        signal = make_signal("exec-9")

        assert signal.idempotency_key == "retry:exec-9"
        assert signal.correlation_id == "exec-9"
        assert signal.triggered_by == TriggeredBy.RETRY
        assert signal.requested_by_user_id == 7


class TestWebhookRetryDispatcher:
    async def test_delivers_signal(self):
        """Should POST the signal with its idempotency key."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        result = await make_dispatcher(handler).dispatch(make_signal())

        assert result.delivered is True
        assert result.provider == "webhook"
        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK_URL
        assert requests[0].headers["Idempotency-Key"] == "retry:exec-1"
        assert b'"original_execution_id":"exec-1"' in requests[0].content.replace(b" ", b"")

    async def test_sends_bearer_token(self):
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization", "")
            return httpx.Response(200)

        await make_dispatcher(handler, token="secret").dispatch(make_signal())

        assert seen["auth"] == "Bearer secret"

    async def test_client_error_is_not_retried(self):
        """Should report a 4xx refusal without retrying."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(409)

        result = await make_dispatcher(handler).dispatch(make_signal())

        assert result.delivered is False
        assert result.error == "HTTP 409"
        assert calls == 1

    async def test_server_error_is_retried_then_reported(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        result = await make_dispatcher(handler).dispatch(make_signal())

        assert result.delivered is False
        assert result.error
        assert calls == 2

    async def test_recovers_after_transient_failure(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        result = await make_dispatcher(handler).dispatch(make_signal())

        assert result.delivered is True
        assert calls == 2

    async def test_batch_keeps_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        signals = [make_signal(f"exec-{i}") for i in range(3)]
        results = await make_dispatcher(handler).dispatch_batch(signals)

        assert [r.execution_id for r in results] == ["exec-0", "exec-1", "exec-2"]
        assert all(r.delivered for r in results)


class TestLogOnlyRetryDispatcher:
    async def test_reports_delivered(self):
        result = await LogOnlyRetryDispatcher().dispatch(make_signal())

        assert result.delivered is True
        assert result.provider == "log"


class TestGetRetryDispatcher:
    @pytest.fixture(autouse=True)
    def fresh_dispatcher(self):
        reset_retry_dispatcher()
        yield
        reset_retry_dispatcher()

    async def test_log_only_without_webhook(self, monkeypatch):
        monkeypatch.setattr(
            retry_dispatch, "get_settings", lambda: Settings(retry_webhook_url="")
        )

        assert isinstance(get_retry_dispatcher(), LogOnlyRetryDispatcher)

    async def test_webhook_when_configured(self, monkeypatch):
        monkeypatch.setattr(
            retry_dispatch,
            "get_settings",
            lambda: Settings(retry_webhook_url=WEBHOOK_URL, retry_webhook_token="t"),
        )

        dispatcher = get_retry_dispatcher()

        assert isinstance(dispatcher, WebhookRetryDispatcher)
        assert dispatcher.url == WEBHOOK_URL
        assert dispatcher.headers == {"Authorization": "Bearer t"}

    async def test_instance_is_reused(self, monkeypatch):
        monkeypatch.setattr(
            retry_dispatch, "get_settings", lambda: Settings(retry_webhook_url="")
        )

        assert get_retry_dispatcher() is get_retry_dispatcher()
