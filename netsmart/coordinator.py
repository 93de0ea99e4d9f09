# =============================================================================
# NetSmart -- Coordinator
# =============================================================================
#
# Primary public API.  Decides per call whether to execute now (with retry)
# or defer to the request queue, drains the queue when the link returns, and
# keeps statistics and telemetry.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, replace
from typing import Any, Callable, Mapping

from ._logging import logger
from .cancellation import CancellationToken
from .config import NetSmartConfig, RetryConfig
from .errors import (
    CallCancelledError,
    CallVanishedError,
    HTTPStatusError,
    NetSmartError,
)
from .listeners import ListenerRegistry
from .quality import LatencyTracker
from .request_queue import QueuedCall, RequestQueue
from .retry import is_retryable, run_with_retry
from .sensors import ProbingSensor, StatusSensor
from .storage import StorageBackend
from .transport import HttpxTransport, Transport
from .types import (
    ConnectivityStatus,
    NetworkEvent,
    NetworkEventType,
    NetworkQuality,
    NetworkStatistics,
    RequestOptions,
    TransportResponse,
)

StatusListener = Callable[[ConnectivityStatus], Any]
TelemetryListener = Callable[[NetworkEvent], Any]
RetryOverride = RetryConfig | Mapping[str, Any]


class Coordinator:
    """Network-aware call dispatcher.

    Args:
        config: Engine configuration. Defaults to ``NetSmartConfig()``.
        sensor: Connectivity sensor. Defaults to a :class:`ProbingSensor`
            built from *config* that assumes the link is up until told
            otherwise via ``handle_offline()``.
        transport: HTTP transport. Defaults to an owned
            :class:`HttpxTransport`.
        storage: Backend for queue persistence (used when
            ``config.queue.persist`` is set).

    Example::

        async with Coordinator(NetSmartConfig(queue={"max_size": 100})) as net:
            response = await net.dispatch("https://api.example.com/items")
            print(response.status_code, response.json())
    """

    def __init__(
        self,
        config: NetSmartConfig | None = None,
        *,
        sensor: StatusSensor | None = None,
        transport: Transport | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        self._config = config or NetSmartConfig()
        self._retry: RetryConfig = self._config.retry

        self._owns_sensor = sensor is None
        self._sensor = sensor or ProbingSensor.from_config(self._config)
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport()
        self._queue = RequestQueue(self._config.queue_config, storage)

        self._status = ConnectivityStatus(is_online=False)
        self._statistics = NetworkStatistics()
        self._latency = LatencyTracker()

        self._subscribers: ListenerRegistry[ConnectivityStatus] = ListenerRegistry(
            "status"
        )
        self._watchers: ListenerRegistry[ConnectivityStatus] = ListenerRegistry(
            "queued-call"
        )
        self._telemetry: ListenerRegistry[NetworkEvent] = ListenerRegistry(
            "telemetry"
        )
        self._watches: dict[str, Callable[[], None]] = {}

        self._sensor_unsubscribe: Callable[[], None] | None = None
        self._start_task: asyncio.Future[None] | None = None
        self._draining = False
        self._destroyed = False
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # -- Properties -----------------------------------------------------------

    @property
    def config(self) -> NetSmartConfig:
        return self._config

    @property
    def status(self) -> ConnectivityStatus:
        """Last snapshot received from the sensor."""
        return self._status

    @property
    def sensor(self) -> StatusSensor:
        return self._sensor

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Restore the queue, read the initial status and begin monitoring.

        Idempotent; ``dispatch`` and ``async with`` call it for you.
        """
        self._check_alive()
        if self._start_task is None:
            self._start_task = asyncio.ensure_future(self._start())
        await self._start_task

    async def _start(self) -> None:
        restored = await self._queue.restore()
        if restored:
            logger.debug("%d calls waiting from a previous session", restored)

        try:
            status = await self._sensor.get_status()
        except Exception as exc:
            logger.warning("Initial status fetch failed, starting offline: %s", exc)
            status = ConnectivityStatus(is_online=False)

        self._status = status
        if status.latency_ms is not None:
            self._latency.record(status.latency_ms)
        if status.is_online:
            self._statistics.last_reconnect_at = time.time()

        self._sensor_unsubscribe = self._sensor.start_monitoring(self._on_status)
        logger.debug(
            "Coordinator started (online=%s, quality=%s)",
            self._status.is_online,
            self._status.quality.value,
        )
        if self._status.is_online:
            self._trigger_drain()

    async def destroy(self) -> None:
        """Stop monitoring, cancel background work and release resources.

        Calls still queued stay queued (and persisted) but their callers are
        released with :class:`CallCancelledError`.
        """
        if self._destroyed:
            return
        self._destroyed = True

        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
            await asyncio.gather(self._start_task, return_exceptions=True)

        if self._sensor_unsubscribe is not None:
            self._sensor_unsubscribe()
            self._sensor_unsubscribe = None
        self._sensor.stop_monitoring()

        for registry in (self._subscribers, self._watchers, self._telemetry):
            registry.clear()
            registry.cancel_pending()
        self._watches.clear()

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()

        for call in self._queue.get_all():
            call.fail(CallCancelledError("Coordinator destroyed"))

        if self._owns_sensor and isinstance(self._sensor, ProbingSensor):
            await self._sensor.aclose()
        if self._owns_transport:
            await self._transport.aclose()
        logger.debug("Coordinator destroyed")

    async def __aenter__(self) -> Coordinator:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.destroy()

    # -- Dispatch -------------------------------------------------------------

    async def dispatch(
        self,
        url: str,
        options: RequestOptions | None = None,
        retry: RetryOverride | None = None,
    ) -> TransportResponse:
        """Perform a call, deferring it while the link cannot carry it.

        Args:
            url: Target URL.
            options: Method, headers, body, priority, token and timeout.
            retry: Per-call retry settings layered over the configured
                defaults (full ``RetryConfig`` or partial mapping).

        Returns:
            The response. Non-2xx responses whose status is not retryable
            are returned, not raised.

        Raises:
            QueueFullError: Deferred under the ``reject`` policy with a full
                queue.
            CallVanishedError: The deferred call was dropped or evicted.
            CallCancelledError: The call's token was cancelled, the call was
                cancelled by id, or the coordinator was destroyed.
            NetSmartError: The coordinator has been destroyed.
        """
        self._check_alive()
        await self.start()

        options = options or RequestOptions()
        token = options.token or CancellationToken()
        retry_config = self._resolve_retry(retry)

        if self._should_defer():
            return await self._defer(url, options, retry, token)
        return await self._execute_call(url, options, retry_config, token)

    def _should_defer(self) -> bool:
        if not self._status.is_online:
            return True
        return (
            self._config.defer_when_weak
            and self._status.quality == NetworkQuality.WEAK
        )

    def _resolve_retry(self, retry: RetryOverride | None) -> RetryConfig:
        if retry is None:
            return self._retry
        if isinstance(retry, RetryConfig):
            return retry
        return self._retry.merged(retry)

    async def _execute_call(
        self,
        url: str,
        options: RequestOptions,
        retry: RetryConfig,
        token: CancellationToken,
    ) -> TransportResponse:
        self._statistics.total_requests += 1

        async def attempt(number: int) -> TransportResponse:
            if number > 1:
                self._statistics.retry_attempts += 1
                self._emit(NetworkEventType.REQUEST_RETRIED, url=url, attempt=number)
            response = await self._transport.perform_request(url, options, token)
            if not response.ok:
                failure = HTTPStatusError(response)
                if is_retryable(failure, retry):
                    raise failure
            return response

        try:
            response = await run_with_retry(attempt, retry, token)
        except Exception as exc:
            self._statistics.failed_requests += 1
            self._emit(NetworkEventType.REQUEST_FAILED, url=url, error=exc)
            raise

        self._statistics.successful_requests += 1
        self._emit(
            NetworkEventType.REQUEST_SUCCEEDED,
            url=url,
            status_code=response.status_code,
        )
        return response

    # -- Deferral -------------------------------------------------------------

    async def _defer(
        self,
        url: str,
        options: RequestOptions,
        retry: RetryOverride | None,
        token: CancellationToken,
    ) -> TransportResponse:
        token.raise_if_cancelled()
        # The queued call gets its own token so withdrawing it never cancels
        # a token the caller shares with other calls.
        call = QueuedCall(
            url=url,
            method=options.method,
            headers=dict(options.headers),
            body=options.body,
            priority=options.priority,
            timeout=options.timeout,
            retry_override=_retry_override_dict(retry),
            token=CancellationToken(),
            future=asyncio.get_running_loop().create_future(),
        )
        call_id = await self._queue.enqueue(call)
        if call.future.done():
            # Dropped on admission
            return await call.future

        logger.debug("Deferred %s %s as %s", call.method, url, call_id)
        self._emit(NetworkEventType.REQUEST_QUEUED, call_id=call_id, url=url)
        self._watch_until_dispatchable(call_id)
        try:
            await self._wait_queued(call, token)
            return await call.future
        except asyncio.CancelledError:
            # Caller gave up: withdraw the call so nothing runs on its behalf
            call.token.cancel("Caller cancelled")
            call.future.cancel()
            self._fire_task(self._withdraw(call, None))
            raise
        finally:
            self._unwatch(call_id)

    async def _wait_queued(self, call: QueuedCall, token: CancellationToken) -> None:
        """Wait until *call* settles or the caller's *token* fires."""
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {call.future, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        if call.future.done():
            return

        reason = token.reason or "Cancelled"
        call.token.cancel(reason)
        await self._withdraw(call, CallCancelledError(reason))

    async def _withdraw(self, call: QueuedCall, exc: BaseException | None) -> None:
        """Take *call* out of the queue and settle it with *exc*.

        ``None`` cancels the future instead, for callers no longer waiting.
        A call already taken by another path is left to that path; its
        cancelled token aborts the in-flight attempt.
        """
        if await self._queue.take(call.id) is None:
            return
        self._unwatch(call.id)
        if exc is None:
            if call.future is not None:
                call.future.cancel()
        else:
            call.fail(exc)
        logger.debug("Withdrew queued call %s", call.id)

    def _watch_until_dispatchable(self, call_id: str) -> None:
        def watch(status: ConnectivityStatus) -> None:
            if not status.is_dispatchable:
                return
            self._unwatch(call_id)
            self._fire_task(self._dispatch_by_id(call_id))

        self._watches[call_id] = self._watchers.add(watch)
        # Status may have changed while the call was being admitted
        watch(self._status)

    def _unwatch(self, call_id: str) -> None:
        unsubscribe = self._watches.pop(call_id, None)
        if unsubscribe is not None:
            unsubscribe()

    async def _dispatch_by_id(self, call_id: str) -> None:
        call = await self._queue.take(call_id)
        if call is None:
            # Drained, cancelled or evicted by another path, which settled it
            return
        if self._settle_if_cancelled(call):
            return
        self._emit(NetworkEventType.REQUEST_DEQUEUED, call_id=call_id, url=call.url)
        await self._run_queued(call)

    @staticmethod
    def _settle_if_cancelled(call: QueuedCall) -> bool:
        """Fail a call whose token fired while it was queued; it never runs."""
        if not call.token.cancelled:
            return False
        call.fail(CallCancelledError(call.token.reason or "Cancelled"))
        return True

    async def _run_queued(self, call: QueuedCall) -> None:
        options = RequestOptions(
            method=call.method,
            headers=call.headers,
            body=call.body,
            priority=call.priority,
            token=call.token,
            timeout=call.timeout,
        )
        try:
            response = await self._execute_call(
                call.url, options, self._retry.merged(call.retry_override), call.token
            )
        except asyncio.CancelledError:
            call.fail(CallCancelledError("Coordinator destroyed"))
            raise
        except Exception as exc:
            logger.warning("Queued call %s to %s failed: %s", call.id, call.url, exc)
            call.fail(exc)
        else:
            call.resolve(response)

    # -- Drain ----------------------------------------------------------------

    def _trigger_drain(self) -> None:
        if self._draining or self._destroyed or not len(self._queue):
            return
        self._draining = True
        self._fire_task(self._drain_queue())

    async def _drain_queue(self) -> None:
        """Execute queued calls front to back while online."""
        drained = 0
        try:
            while len(self._queue) and self._status.is_online:
                call = await self._queue.dequeue()
                if call is None:
                    break
                if self._settle_if_cancelled(call):
                    continue
                self._emit(
                    NetworkEventType.REQUEST_DEQUEUED, call_id=call.id, url=call.url
                )
                await self._run_queued(call)
                drained += 1
        finally:
            self._draining = False
        if drained:
            logger.info("Drained %d queued calls (%d left)", drained, len(self._queue))

    # -- Status ---------------------------------------------------------------

    def _on_status(self, status: ConnectivityStatus) -> None:
        previous = self._status
        if status is previous:
            return
        self._status = status
        if status.latency_ms is not None:
            self._latency.record(status.latency_ms)

        if not previous.is_online and status.is_online:
            self._statistics.last_reconnect_at = time.time()
            logger.info("Network online (quality=%s)", status.quality.value)
            self._emit(NetworkEventType.ONLINE, status=status)
            self._trigger_drain()
        elif previous.is_online and not status.is_online:
            logger.info("Network offline")
            self._emit(NetworkEventType.OFFLINE, status=status)
        elif status.is_dispatchable and not previous.is_dispatchable:
            # Weak link recovered; calls without a waiting caller run too
            self._trigger_drain()

        if previous.quality != status.quality:
            logger.debug(
                "Quality %s -> %s", previous.quality.value, status.quality.value
            )
            self._emit(
                NetworkEventType.QUALITY_CHANGED,
                status=status,
                previous_quality=previous.quality,
            )
        if previous.link_type != status.link_type:
            self._emit(
                NetworkEventType.TYPE_CHANGED,
                status=status,
                previous_type=previous.link_type,
            )

        self._subscribers.notify(status)
        self._watchers.notify(status)

    async def get_status(self) -> ConnectivityStatus:
        """Ask the sensor for a fresh snapshot and return it."""
        await self.start()
        try:
            await self._sensor.get_status()
        except Exception as exc:
            logger.warning("Status refresh failed: %s", exc)
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; it receives the current status now."""
        unsubscribe = self._subscribers.add(listener)
        self._subscribers.deliver(listener, self._status)
        return unsubscribe

    def on_telemetry(self, listener: TelemetryListener) -> Callable[[], None]:
        return self._telemetry.add(listener)

    # -- Queue / statistics ---------------------------------------------------

    def get_statistics(self) -> NetworkStatistics:
        return replace(
            self._statistics,
            queued_requests=len(self._queue),
            average_latency_ms=self._latency.average_ms,
            latency_jitter_ms=self._latency.jitter_ms,
        )

    def get_queued_calls(self) -> list[QueuedCall]:
        return self._queue.get_all()

    async def clear_queue(self) -> None:
        """Drop every queued call. Waiting callers get CallVanishedError."""
        for call_id in list(self._watches):
            self._unwatch(call_id)
        await self._queue.clear()

    async def cancel(self, call_id: str) -> bool:
        """Cancel a queued call. Returns ``False`` if it is not queued."""
        call = await self._queue.take(call_id)
        if call is None:
            return False
        self._unwatch(call_id)
        call.token.cancel("Cancelled by id")
        call.fail(CallCancelledError(f"Call {call_id} cancelled"))
        logger.debug("Cancelled queued call %s", call_id)
        return True

    # -- Internal -------------------------------------------------------------

    def _check_alive(self) -> None:
        if self._destroyed:
            raise NetSmartError("Coordinator has been destroyed")

    def _emit(self, event_type: NetworkEventType, **payload: Any) -> None:
        if not self._telemetry:
            return
        self._telemetry.notify(NetworkEvent(event_type, time.time(), payload))

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)


def _retry_override_dict(retry: RetryOverride | None) -> dict[str, Any] | None:
    if retry is None:
        return None
    if isinstance(retry, RetryConfig):
        return asdict(retry)
    return dict(retry)
