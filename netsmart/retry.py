# =============================================================================
# NetSmart -- Retry Policy
# =============================================================================
#
# Backoff calculation, retryability classification and the retry loop.
# Stateless: everything a call needs travels in its RetryConfig.
# =============================================================================

from __future__ import annotations

import random
from typing import Awaitable, Callable, TypeVar

from ._logging import logger
from .cancellation import CancellationToken, sleep_cancellable
from .config import RetryConfig
from .constants import (
    MAX_BACKOFF_EXPONENT,
    RETRYABLE_FALLBACK_MIN_STATUS,
    RETRYABLE_FALLBACK_STATUSES,
)
from .errors import CallCancelledError, TransportError
from .types import RetryStrategy

T = TypeVar("T")

# Failures recognised as transport-layer problems regardless of tags.
_TRANSPORT_FAILURES: tuple[type[BaseException], ...] = (
    TransportError,
    ConnectionError,
    TimeoutError,
)


def compute_delay(attempt: int, config: RetryConfig) -> int:
    """Milliseconds to wait after failed *attempt* (1-based)."""
    base = config.base_delay_ms
    strategy = config.strategy

    if strategy == RetryStrategy.FIXED:
        delay = float(base)
    else:
        exponent = min(max(attempt - 1, 0), MAX_BACKOFF_EXPONENT)
        delay = base * (2**exponent)
        if strategy == RetryStrategy.EXPONENTIAL_JITTER:
            # Full jitter
            delay = random.uniform(0.0, delay)
        elif strategy == RetryStrategy.EXPONENTIAL_PARTIAL_JITTER:
            delay = random.uniform(delay / 2, delay)

    if config.max_delay_ms is not None:
        delay = min(delay, config.max_delay_ms)

    return max(0, int(delay))


def _status_of(failure: BaseException) -> int | None:
    status = getattr(failure, "status_code", None)
    if status is None:
        response = getattr(failure, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(failure: BaseException, config: RetryConfig) -> bool:
    """Whether *failure* deserves another attempt under *config*."""
    if isinstance(failure, CallCancelledError):
        return False

    if config.retryable_error_tags:
        type_tag = type(failure).__name__
        message = str(failure)
        for tag in config.retryable_error_tags:
            if tag in type_tag or tag in message:
                return True

    if isinstance(failure, _TRANSPORT_FAILURES):
        return True

    status = _status_of(failure)
    if status is None:
        return False
    if config.retryable_status_codes:
        return status in config.retryable_status_codes
    return (
        status >= RETRYABLE_FALLBACK_MIN_STATUS
        or status in RETRYABLE_FALLBACK_STATUSES
    )


async def run_with_retry(
    operation: Callable[[int], Awaitable[T]],
    config: RetryConfig,
    token: CancellationToken | None = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retries run out.

    The final failure, or the first non-retryable one, propagates as-is.

    Raises:
        CallCancelledError: *token* cancelled before an attempt or during
            a backoff wait.
    """
    attempt = 1
    while True:
        if token is not None:
            token.raise_if_cancelled()

        try:
            return await operation(attempt)
        except Exception as exc:
            if not is_retryable(exc, config):
                logger.debug("Attempt %d failed, not retryable: %r", attempt, exc)
                raise
            if attempt >= config.max_attempts:
                logger.debug(
                    "Attempt %d/%d failed, giving up: %r",
                    attempt,
                    config.max_attempts,
                    exc,
                )
                raise
            delay_ms = compute_delay(attempt, config)
            logger.debug(
                "Attempt %d/%d failed (%r), retrying in %dms",
                attempt,
                config.max_attempts,
                exc,
                delay_ms,
            )

        await sleep_cancellable(delay_ms / 1000, token)
        attempt += 1
