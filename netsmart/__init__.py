"""NetSmart: network-aware retries, deferral and queueing for HTTP calls.

Async usage::

    from netsmart import NetSmartConfig, create_coordinator

    config = NetSmartConfig(
        retry={"max_attempts": 5, "strategy": "exponential-jitter"},
        queue={"max_size": 100, "policy": "drop-oldest"},
    )
    async with create_coordinator(config) as net:
        response = await net.dispatch("https://api.example.com/items")
        print(response.status_code, response.json())

Feeding connectivity signals from the application::

    from netsmart import Coordinator, ProbingSensor

    sensor = ProbingSensor(online=False)
    net = Coordinator(sensor=sensor)
    ...
    sensor.handle_online()    # queued calls drain now

Optional extras::

    pip install netsmart[fast]   # orjson for queue persistence
"""

from ._version import __version__
from .cancellation import CancellationToken
from .config import NetSmartConfig, QualityThresholds, QueueConfig, RetryConfig
from .coordinator import Coordinator
from .errors import (
    CallCancelledError,
    CallVanishedError,
    HTTPStatusError,
    NetSmartError,
    QueueFullError,
    SerializationError,
    StorageError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from .probes import HttpProbe, Probe, WebSocketProbe, make_probe
from .quality import LatencyTracker, classify
from .request_queue import QueuedCall, RequestQueue
from .retry import compute_delay, is_retryable, run_with_retry
from .sensors import (
    ConnectivityProvider,
    PlatformConnectivity,
    PlatformSensor,
    ProbingSensor,
    StatusSensor,
)
from .storage import JsonFileStorage, MemoryStorage, StorageBackend
from .transport import HttpxTransport, Transport
from .types import (
    ConnectivityStatus,
    LinkType,
    NetworkEvent,
    NetworkEventType,
    NetworkQuality,
    NetworkStatistics,
    QueuePolicy,
    RequestOptions,
    RetryStrategy,
    TransportResponse,
)


def create_coordinator(
    config: NetSmartConfig | None = None,
    **kwargs,
) -> Coordinator:
    """Create a coordinator.

    Use as an async context manager. Keyword arguments are forwarded to
    :class:`Coordinator`: ``sensor``, ``transport``, ``storage``.

    Args:
        config: Engine configuration.
        **kwargs: Passed to :class:`Coordinator`.

    Returns:
        A new, unstarted :class:`Coordinator`. Every call returns a fresh
        instance; nothing is shared between them.
    """
    return Coordinator(config, **kwargs)


__all__ = [
    "__version__",
    "create_coordinator",
    "Coordinator",
    "NetSmartConfig",
    "RetryConfig",
    "QueueConfig",
    "QualityThresholds",
    "CancellationToken",
    "RequestOptions",
    "TransportResponse",
    "ConnectivityStatus",
    "NetworkEvent",
    "NetworkEventType",
    "NetworkQuality",
    "NetworkStatistics",
    "LinkType",
    "QueuePolicy",
    "RetryStrategy",
    "compute_delay",
    "is_retryable",
    "run_with_retry",
    "classify",
    "LatencyTracker",
    "QueuedCall",
    "RequestQueue",
    "StatusSensor",
    "ProbingSensor",
    "PlatformSensor",
    "PlatformConnectivity",
    "ConnectivityProvider",
    "Probe",
    "HttpProbe",
    "WebSocketProbe",
    "make_probe",
    "Transport",
    "HttpxTransport",
    "StorageBackend",
    "MemoryStorage",
    "JsonFileStorage",
    "NetSmartError",
    "QueueFullError",
    "CallVanishedError",
    "CallCancelledError",
    "TransportError",
    "TransportConnectError",
    "TransportTimeoutError",
    "HTTPStatusError",
    "StorageError",
    "SerializationError",
]
