"""Tests for retry policy."""

from unittest.mock import AsyncMock, patch

import pytest

from netsmart.cancellation import CancellationToken
from netsmart.config import RetryConfig
from netsmart.errors import (
    CallCancelledError,
    HTTPStatusError,
    TransportConnectError,
    TransportTimeoutError,
)
from netsmart.retry import compute_delay, is_retryable, run_with_retry
from netsmart.types import RetryStrategy, TransportResponse


def _status_error(code):
    return HTTPStatusError(TransportResponse(status_code=code))


class TestComputeDelay:
    def test_fixed_ignores_attempt(self):
        config = RetryConfig(strategy="fixed", base_delay_ms=250)
        assert [compute_delay(n, config) for n in (1, 2, 5)] == [250, 250, 250]

    def test_exponential_doubles(self):
        config = RetryConfig(strategy="exponential", base_delay_ms=100, max_delay_ms=None)
        assert [compute_delay(n, config) for n in (1, 2, 3, 4)] == [100, 200, 400, 800]

    def test_capped_at_max_delay(self):
        config = RetryConfig(strategy="exponential", base_delay_ms=1000, max_delay_ms=5000)
        assert compute_delay(10, config) == 5000

    def test_huge_attempt_stays_finite(self):
        config = RetryConfig(strategy="exponential", base_delay_ms=1000, max_delay_ms=30000)
        assert compute_delay(10_000, config) == 30000

    def test_full_jitter_within_bounds(self):
        config = RetryConfig(strategy="exponential-jitter", base_delay_ms=100, max_delay_ms=None)
        for _ in range(200):
            assert 0 <= compute_delay(3, config) <= 400

    def test_partial_jitter_within_bounds(self):
        config = RetryConfig(
            strategy=RetryStrategy.EXPONENTIAL_PARTIAL_JITTER,
            base_delay_ms=100,
            max_delay_ms=None,
        )
        for _ in range(200):
            assert 200 <= compute_delay(3, config) <= 400

    def test_jitter_respects_cap(self):
        config = RetryConfig(strategy="exponential-jitter", base_delay_ms=1000, max_delay_ms=1500)
        for _ in range(100):
            assert compute_delay(8, config) <= 1500

    def test_zero_base(self):
        config = RetryConfig(base_delay_ms=0)
        assert compute_delay(4, config) == 0


class TestIsRetryable:
    def test_transport_errors_retryable(self):
        config = RetryConfig(retryable_error_tags=frozenset())
        assert is_retryable(TransportConnectError("refused"), config)
        assert is_retryable(TransportTimeoutError("slow"), config)
        assert is_retryable(ConnectionResetError(), config)

    def test_tag_matches_message(self):
        config = RetryConfig()
        assert is_retryable(RuntimeError("connect ECONNREFUSED 10.0.0.1"), config)

    def test_tag_matches_class_name(self):
        class GatewayTimeoutError(Exception):
            pass

        assert is_retryable(GatewayTimeoutError("x"), RetryConfig())

    def test_plain_error_not_retryable(self):
        assert not is_retryable(ValueError("bad input"), RetryConfig())

    def test_cancellation_never_retryable(self):
        assert not is_retryable(CallCancelledError("TimeoutError"), RetryConfig())

    def test_default_status_rule(self):
        config = RetryConfig()
        assert is_retryable(_status_error(500), config)
        assert is_retryable(_status_error(503), config)
        assert is_retryable(_status_error(408), config)
        assert is_retryable(_status_error(429), config)
        assert not is_retryable(_status_error(404), config)
        assert not is_retryable(_status_error(400), config)

    def test_explicit_status_list(self):
        config = RetryConfig(retryable_status_codes={502})
        assert is_retryable(_status_error(502), config)
        assert not is_retryable(_status_error(503), config)

    def test_status_read_from_response_attribute(self):
        class Failure(Exception):
            def __init__(self, response):
                self.response = response

        failure = Failure(TransportResponse(status_code=503))
        assert is_retryable(failure, RetryConfig())


class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        operation = AsyncMock(return_value="ok")
        assert await run_with_retry(operation, RetryConfig()) == "ok"
        operation.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_fixed_backoff_two_waits_then_raise(self):
        config = RetryConfig(strategy="fixed", base_delay_ms=100, max_attempts=3)
        failure = TransportConnectError("refused")
        operation = AsyncMock(side_effect=failure)

        with patch("netsmart.retry.sleep_cancellable", new_callable=AsyncMock) as sleep:
            with pytest.raises(TransportConnectError) as exc_info:
                await run_with_retry(operation, config)

        assert exc_info.value is failure
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_recovers_on_later_attempt(self):
        config = RetryConfig(strategy="fixed", base_delay_ms=10)
        operation = AsyncMock(side_effect=[TransportTimeoutError("t"), "done"])

        with patch("netsmart.retry.sleep_cancellable", new_callable=AsyncMock):
            assert await run_with_retry(operation, config) == "done"
        assert [c.args[0] for c in operation.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        operation = AsyncMock(side_effect=ValueError("nope"))
        with patch("netsmart.retry.sleep_cancellable", new_callable=AsyncMock) as sleep:
            with pytest.raises(ValueError):
                await run_with_retry(operation, RetryConfig())
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_attempt_never_waits(self):
        operation = AsyncMock(side_effect=TransportConnectError("x"))
        with patch("netsmart.retry.sleep_cancellable", new_callable=AsyncMock) as sleep:
            with pytest.raises(TransportConnectError):
                await run_with_retry(operation, RetryConfig(max_attempts=1))
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_operation(self):
        token = CancellationToken()
        token.cancel("stop")
        operation = AsyncMock()
        with pytest.raises(CallCancelledError):
            await run_with_retry(operation, RetryConfig(), token)
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        token = CancellationToken()
        config = RetryConfig(strategy="fixed", base_delay_ms=60_000)

        async def operation(attempt):
            token.cancel("user abort")
            raise TransportConnectError("refused")

        with pytest.raises(CallCancelledError):
            await run_with_retry(operation, config, token)
