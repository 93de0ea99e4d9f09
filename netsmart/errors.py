# =============================================================================
# NetSmart -- Error Types
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import TransportResponse


class NetSmartError(Exception):
    """Base exception for all NetSmart errors."""


class QueueFullError(NetSmartError):
    """Queue is at capacity and the admission policy is ``reject``."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        super().__init__(f"Queue is full ({max_size} calls)")


class CallVanishedError(NetSmartError):
    """A deferred call left the queue without being executed."""

    def __init__(self, call_id: str, reason: str = "no longer in queue") -> None:
        self.call_id = call_id
        self.reason = reason
        super().__init__(f"Call {call_id} vanished from queue: {reason}")


class CallCancelledError(NetSmartError):
    """Operation aborted through its cancellation token."""


class TransportError(NetSmartError):
    """Network-level failure below HTTP (refused, reset, DNS, ...)."""


class TransportConnectError(TransportError):
    """Connection could not be established."""


class TransportTimeoutError(TransportError):
    """Transport operation timed out."""


class HTTPStatusError(NetSmartError):
    """Well-formed response whose status code is treated as a failure."""

    def __init__(self, response: TransportResponse) -> None:
        self.response = response
        self.status_code = response.status_code
        super().__init__(f"HTTP {response.status_code}: {response.status_text}")


class StorageError(NetSmartError):
    """Storage backend failure. Always caught by the queue."""


class SerializationError(NetSmartError):
    """Call payload cannot be persisted."""
