# =============================================================================
# NetSmart -- Type Definitions
# =============================================================================

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from .cancellation import CancellationToken


class NetworkQuality(str, Enum):
    """Coarse link health derived from measured latency.

    Thresholds (defaults): WEAK (>=1000ms or unreachable),
    MEDIUM (>=300ms), STRONG (anything faster).
    """

    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class LinkType(str, Enum):
    """Physical link reported by the platform."""

    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    NONE = "none"
    UNKNOWN = "unknown"


class RetryStrategy(str, Enum):
    """Backoff strategy between retry attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential-jitter"
    EXPONENTIAL_PARTIAL_JITTER = "exponential-partial-jitter"


class QueuePolicy(str, Enum):
    """Admission rule applied when the queue is at capacity."""

    DROP_OLDEST = "drop-oldest"
    DROP_NEWEST = "drop-newest"
    PERSIST = "persist"
    REJECT = "reject"


class NetworkEventType(str, Enum):
    """Lifecycle telemetry emitted by the coordinator."""

    ONLINE = "online"
    OFFLINE = "offline"
    QUALITY_CHANGED = "quality-changed"
    TYPE_CHANGED = "type-changed"
    REQUEST_QUEUED = "request-queued"
    REQUEST_DEQUEUED = "request-dequeued"
    REQUEST_RETRIED = "request-retried"
    REQUEST_SUCCEEDED = "request-succeeded"
    REQUEST_FAILED = "request-failed"


@dataclass(frozen=True, slots=True)
class ConnectivityStatus:
    """Snapshot of connectivity as seen by a status sensor.

    Attributes:
        is_online: Whether the platform reports a usable connection.
        quality: Classified link quality. Always ``WEAK`` while offline.
        link_type: Physical link type.
        latency_ms: Most recent probe latency, ``inf`` if the probe failed.
        throughput_bps: Most recent throughput sample in bytes per second.
        updated_at: ``time.time()`` of the snapshot.
    """

    is_online: bool
    quality: NetworkQuality = NetworkQuality.MEDIUM
    link_type: LinkType = LinkType.UNKNOWN
    latency_ms: float | None = None
    throughput_bps: float | None = None
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.is_online and self.quality != NetworkQuality.WEAK:
            object.__setattr__(self, "quality", NetworkQuality.WEAK)

    def evolve(self, **changes: Any) -> ConnectivityStatus:
        """Return a copy with *changes* applied and a fresh timestamp."""
        changes.setdefault("updated_at", time.time())
        return replace(self, **changes)

    @property
    def is_dispatchable(self) -> bool:
        """Online and not weak: deferred calls may run."""
        return self.is_online and self.quality != NetworkQuality.WEAK


@dataclass(frozen=True, slots=True)
class NetworkEvent:
    """A telemetry event.

    Attributes:
        type: One of :class:`NetworkEventType`.
        timestamp: ``time.time()`` at emission.
        payload: Event-specific data, e.g. ``{"call_id": ..., "url": ...}``.
    """

    type: NetworkEventType
    timestamp: float
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class NetworkStatistics:
    """Running counters maintained by the coordinator."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retry_attempts: int = 0
    last_reconnect_at: float | None = None
    queued_requests: int = 0
    average_latency_ms: float = 0.0
    latency_jitter_ms: float = 0.0

    @property
    def retry_success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RequestOptions:
    """Per-call options forwarded to the transport.

    Attributes:
        method: HTTP method.
        headers: Request headers.
        body: ``bytes``/``str`` are sent verbatim, anything else as JSON.
            Must be JSON-serializable if the call may be persisted.
        priority: Queue priority when deferred (higher runs first).
        token: Cancellation token; one is created if omitted.
        timeout: Transport timeout override in seconds.
    """

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    priority: int | None = None
    token: CancellationToken | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class TransportResponse:
    """A well-formed response returned by a transport."""

    status_code: int
    status_text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self, encoding: str = "utf-8") -> str:
        return self.content.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)
