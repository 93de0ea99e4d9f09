# =============================================================================
# NetSmart -- Configuration
# =============================================================================
#
# Dataclass configuration for the coordinator and its collaborators.  Every
# section also accepts a partial mapping, merged over the built-in defaults.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Iterable, Mapping

from .constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_PROBE_INTERVAL_MS,
    DEFAULT_RETRYABLE_ERROR_TAGS,
    DEFAULT_RETRYABLE_STATUS_CODES,
    DEFAULT_STORAGE_KEY,
    QUALITY_MEDIUM_LATENCY,
    QUALITY_WEAK_LATENCY,
)
from .types import QueuePolicy, RetryStrategy


def _apply_overrides(base: Any, overrides: Mapping[str, Any] | None) -> Any:
    """Return *base* with every entry of *overrides* applied.

    ``None`` is a value like any other: ``{"max_delay_ms": None}`` removes the
    cap. Leave a key out to keep the base value.
    """
    if not overrides:
        return base
    known = {f.name for f in fields(base)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(
            f"Unknown {type(base).__name__} option(s): {', '.join(sorted(unknown))}"
        )
    return replace(base, **overrides)


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for a single call.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        strategy: Backoff strategy, see :class:`RetryStrategy`.
        base_delay_ms: Delay unit in milliseconds.
        max_delay_ms: Cap applied after the strategy, ``None`` for no cap.
        retryable_status_codes: HTTP statuses to retry. Empty means the
            built-in rule: ``>= 500``, ``408`` and ``429``.
        retryable_error_tags: Substrings matched against the failure's
            class name and message.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    max_delay_ms: float | None = DEFAULT_MAX_DELAY_MS
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    retryable_error_tags: frozenset[str] = DEFAULT_RETRYABLE_ERROR_TAGS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        object.__setattr__(self, "strategy", RetryStrategy(self.strategy))
        object.__setattr__(
            self, "retryable_status_codes", _frozen(self.retryable_status_codes)
        )
        object.__setattr__(
            self, "retryable_error_tags", _frozen(self.retryable_error_tags)
        )

    def merged(self, overrides: Mapping[str, Any] | None) -> RetryConfig:
        """Layer a partial override on top of this config."""
        return _apply_overrides(self, overrides)


@dataclass(frozen=True)
class QueueConfig:
    """Request queue admission and persistence.

    Attributes:
        policy: What happens when ``max_size`` is reached.
        max_size: Capacity, ``None`` for unbounded.
        persist: Write the queue to storage on every mutation.
        storage_key: Storage key holding the serialized queue.
        priority_enabled: Order by priority instead of FIFO.
    """

    policy: QueuePolicy = QueuePolicy.DROP_OLDEST
    max_size: int | None = None
    persist: bool = False
    storage_key: str = DEFAULT_STORAGE_KEY
    priority_enabled: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "policy", QueuePolicy(self.policy))
        if self.max_size is not None and self.max_size < 1:
            raise ValueError("max_size must be >= 1 or None")


@dataclass(frozen=True)
class QualityThresholds:
    """Latency thresholds in milliseconds (``>= weak`` is weak)."""

    weak: float = QUALITY_WEAK_LATENCY
    medium: float = QUALITY_MEDIUM_LATENCY

    def __post_init__(self) -> None:
        if not 0 <= self.medium <= self.weak:
            raise ValueError("thresholds must satisfy 0 <= medium <= weak")


@dataclass
class NetSmartConfig:
    """Top-level coordinator configuration.

    Attributes:
        retry: Handler-level retry defaults (dataclass or partial mapping).
        queue: Queue settings. Supplying one (even empty) also defers calls
            while quality is weak; ``None`` defers only while offline.
        quality_thresholds: Latency thresholds for classification.
        enable_quality_probing: Actively probe latency/throughput.
        probe_interval_ms: Period of background probes while monitored.
        probe_endpoint: URL probed for latency. ``ws://``/``wss://`` URLs
            are probed with a WebSocket ping.
        respect_data_saver: Skip throughput sampling.
    """

    retry: RetryConfig | Mapping[str, Any] = field(default_factory=RetryConfig)
    queue: QueueConfig | Mapping[str, Any] | None = None
    quality_thresholds: QualityThresholds | Mapping[str, Any] = field(
        default_factory=QualityThresholds
    )
    enable_quality_probing: bool = False
    probe_interval_ms: float = DEFAULT_PROBE_INTERVAL_MS
    probe_endpoint: str | None = None
    respect_data_saver: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.retry, RetryConfig):
            self.retry = RetryConfig().merged(self.retry)
        if self.queue is not None and not isinstance(self.queue, QueueConfig):
            self.queue = _apply_overrides(QueueConfig(), self.queue)
        if not isinstance(self.quality_thresholds, QualityThresholds):
            self.quality_thresholds = _apply_overrides(
                QualityThresholds(), self.quality_thresholds
            )
        if self.probe_interval_ms <= 0:
            raise ValueError("probe_interval_ms must be > 0")

    @property
    def queue_config(self) -> QueueConfig:
        return self.queue if isinstance(self.queue, QueueConfig) else QueueConfig()

    @property
    def defer_when_weak(self) -> bool:
        return self.queue is not None


def _frozen(values: Iterable[Any]) -> frozenset[Any]:
    if isinstance(values, frozenset):
        return values
    if isinstance(values, (str, bytes)):
        return frozenset({values})
    return frozenset(values)
