# =============================================================================
# NetSmart -- Request Queue
# =============================================================================
#
# Holds outbound calls deferred while the link is down or weak, and hands
# them back (priority first, else FIFO) when they can be dispatched.
#
# Optional persistence writes the whole queue under one storage key on every
# mutation.  Persistence is best-effort: storage faults are logged, never
# raised into the request path.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

try:
    import orjson

    ORJSON_AVAILABLE = True
except ImportError:
    ORJSON_AVAILABLE = False

from ._logging import logger
from .cancellation import CancellationToken
from .config import QueueConfig
from .constants import STORAGE_TIMEOUT
from .errors import CallVanishedError, QueueFullError, SerializationError
from .storage import StorageBackend
from .types import QueuePolicy, TransportResponse

# Fields written to storage; token and future never survive serialization.
_PERSISTED_FIELDS = (
    "id",
    "url",
    "method",
    "headers",
    "body",
    "priority",
    "timeout",
    "enqueued_at",
    "retry_override",
)


def _json_default(obj: Any) -> Any:
    """Serializer hook for types json/orjson do not handle natively."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type {type(obj).__name__} is not JSON serializable")


def _json_dumps(data: Any) -> str:
    """Serialize to a JSON string using orjson if available, stdlib fallback."""
    if ORJSON_AVAILABLE:
        return orjson.dumps(data, default=_json_default).decode()
    return json.dumps(data, default=_json_default)


def _json_loads(data: str) -> Any:
    return orjson.loads(data) if ORJSON_AVAILABLE else json.loads(data)


@dataclass
class QueuedCall:
    """An outbound call waiting in the queue.

    ``future`` is the caller's deferred result. Whichever path removes the
    call from the queue is responsible for settling it.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    priority: int | None = None
    timeout: float | None = None
    retry_override: dict[str, Any] | None = None
    id: str = ""
    enqueued_at: float = 0.0
    token: CancellationToken = field(
        default_factory=CancellationToken, repr=False, compare=False
    )
    future: asyncio.Future[TransportResponse] | None = field(
        default=None, repr=False, compare=False
    )

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in _PERSISTED_FIELDS}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedCall:
        """Rebuild a persisted call with a fresh cancellation token."""
        return cls(
            url=data["url"],
            method=data.get("method", "GET"),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            priority=data.get("priority"),
            timeout=data.get("timeout"),
            retry_override=data.get("retry_override"),
            id=data.get("id") or _generate_id(),
            enqueued_at=data.get("enqueued_at", 0.0),
        )

    def resolve(self, response: TransportResponse) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_result(response)

    def fail(self, exc: BaseException) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_exception(exc)


class RequestQueue:
    """Bounded, optionally prioritised and persisted queue of calls.

    Args:
        config: Admission policy, capacity, ordering and persistence.
        storage: Backend used when ``config.persist`` is set.
    """

    def __init__(
        self,
        config: QueueConfig | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        self._config = config or QueueConfig()
        self._storage = storage
        self._queue: deque[QueuedCall] = deque()

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def persistent(self) -> bool:
        return self._config.persist and self._storage is not None

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, call_id: object) -> bool:
        return any(call.id == call_id for call in self._queue)

    # -- Mutations ------------------------------------------------------------

    async def enqueue(self, call: QueuedCall) -> str:
        """Admit *call* and return its generated id.

        Under ``drop-newest`` a full queue does not admit the call, but the
        generated id is still returned and the call's future fails with
        :class:`CallVanishedError`. Use ``call_id in queue`` to tell whether
        it was actually queued.

        Raises:
            QueueFullError: Queue full under the ``reject`` policy.
            SerializationError: Persistence is on and the call cannot be
                serialized.
        """
        call.id = _generate_id()
        call.enqueued_at = time.time()

        if self.persistent:
            try:
                _json_dumps(call.to_dict())
            except (TypeError, ValueError) as exc:
                raise SerializationError(
                    f"Call {call.id} cannot be persisted: {exc}"
                ) from exc

        max_size = self._config.max_size
        if max_size is not None and len(self._queue) >= max_size:
            policy = self._config.policy
            if policy == QueuePolicy.REJECT:
                raise QueueFullError(max_size)
            if policy == QueuePolicy.DROP_NEWEST:
                logger.debug("Queue full (%d), dropping newest call %s", max_size, call.id)
                call.fail(CallVanishedError(call.id, "dropped on admission"))
                return call.id
            if policy == QueuePolicy.DROP_OLDEST and self._queue:
                evicted = self._queue.popleft()
                logger.debug("Queue full (%d), evicted oldest call %s", max_size, evicted.id)
                evicted.fail(CallVanishedError(evicted.id, "evicted by drop-oldest policy"))
            # PERSIST: capacity is advisory, admit anyway

        self._insert(call)
        await self._save()
        return call.id

    async def dequeue(self) -> QueuedCall | None:
        """Remove and return the front call, or ``None`` if empty."""
        if not self._queue:
            return None
        call = self._queue.popleft()
        await self._save()
        return call

    async def take(self, call_id: str) -> QueuedCall | None:
        """Remove a call by id and hand it to the caller, future untouched."""
        for call in self._queue:
            if call.id == call_id:
                self._queue.remove(call)
                await self._save()
                return call
        return None

    async def remove(self, call_id: str) -> bool:
        """Drop a call by id. A caller still waiting on it is failed."""
        call = await self.take(call_id)
        if call is None:
            return False
        call.fail(CallVanishedError(call_id, "removed from queue"))
        return True

    async def clear(self) -> None:
        """Drop every call and the persisted copy."""
        calls = list(self._queue)
        self._queue.clear()
        for call in calls:
            call.fail(CallVanishedError(call.id, "queue cleared"))
        if self.persistent:
            try:
                await asyncio.wait_for(
                    self._storage.remove_item(self._config.storage_key),
                    timeout=STORAGE_TIMEOUT,
                )
            except Exception as exc:
                logger.warning("Failed to remove queue from storage: %s", exc)

    # -- Queries --------------------------------------------------------------

    def peek(self) -> QueuedCall | None:
        return self._queue[0] if self._queue else None

    def get(self, call_id: str) -> QueuedCall | None:
        for call in self._queue:
            if call.id == call_id:
                return call
        return None

    def get_all(self) -> list[QueuedCall]:
        return list(self._queue)

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._queue),
            "capacity": self._config.max_size,
            "policy": self._config.policy.value,
            "priority_enabled": self._config.priority_enabled,
            "persistent": self.persistent,
        }

    # -- Persistence ----------------------------------------------------------

    async def restore(self) -> int:
        """Reload persisted calls. Returns how many were restored."""
        if not self.persistent:
            return 0
        try:
            raw = await asyncio.wait_for(
                self._storage.get_item(self._config.storage_key),
                timeout=STORAGE_TIMEOUT,
            )
            if not raw:
                return 0
            restored = [QueuedCall.from_dict(item) for item in _json_loads(raw)]
        except Exception as exc:
            logger.warning("Failed to load queue from storage: %s", exc)
            return 0

        known = {call.id for call in self._queue}
        for call in restored:
            if call.id not in known:
                self._insert(call)
        logger.info("Restored %d queued calls from storage", len(restored))
        return len(restored)

    async def _save(self) -> None:
        if not self.persistent:
            return
        try:
            payload = _json_dumps([call.to_dict() for call in self._queue])
            await asyncio.wait_for(
                self._storage.set_item(self._config.storage_key, payload),
                timeout=STORAGE_TIMEOUT,
            )
        except Exception as exc:
            logger.warning("Failed to save queue to storage: %s", exc)

    # -- Internal -------------------------------------------------------------

    def _insert(self, call: QueuedCall) -> None:
        if not self._config.priority_enabled:
            self._queue.append(call)
            return
        priority = call.priority or 0
        for index, existing in enumerate(self._queue):
            if (existing.priority or 0) < priority:
                self._queue.insert(index, call)
                return
        self._queue.append(call)


def _generate_id() -> str:
    return uuid4().hex
