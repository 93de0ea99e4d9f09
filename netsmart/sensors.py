# =============================================================================
# NetSmart -- Status Sensors
# =============================================================================
#
# A sensor owns the current ConnectivityStatus and pushes every change to its
# listeners.  Two implementations:
#
#   ProbingSensor   online/offline signals fed by the application, quality
#                   measured by an active Probe on a timer.
#   PlatformSensor  everything read from an injected ConnectivityProvider
#                   (OS network APIs, NetworkManager, a mobile bridge, ...).
#
# Observation (timers, provider subscriptions) runs only while at least one
# listener is registered.
# =============================================================================

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from ._logging import logger
from .config import NetSmartConfig, QualityThresholds
from .constants import DEFAULT_PROBE_INTERVAL_MS, WIFI_MEDIUM_DBM, WIFI_STRONG_DBM
from .listeners import ListenerRegistry
from .probes import Probe, make_probe
from .quality import classify
from .types import ConnectivityStatus, LinkType, NetworkQuality

StatusListener = Callable[[ConnectivityStatus], Any]


class StatusSensor(ABC):
    """Source of connectivity snapshots."""

    def __init__(self, initial: ConnectivityStatus | None = None) -> None:
        self._status = initial or ConnectivityStatus(is_online=False)
        self._listeners: ListenerRegistry[ConnectivityStatus] = ListenerRegistry(
            "status"
        )

    @property
    def status(self) -> ConnectivityStatus:
        """Last published snapshot, without measuring."""
        return self._status

    @abstractmethod
    async def get_status(self) -> ConnectivityStatus:
        """Refresh (where the sensor can) and return the current snapshot."""

    def start_monitoring(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener* and deliver the current snapshot to it at once.

        Returns a handle that unregisters the listener. Observation stops
        once the last listener is gone.
        """
        first = not self._listeners
        remove = self._listeners.add(listener)
        self._listeners.deliver(listener, self._status)
        if first:
            self._start_observing()

        def unsubscribe() -> None:
            remove()
            if not self._listeners:
                self._stop_observing()

        return unsubscribe

    def stop_monitoring(self) -> None:
        """Drop every listener and stop observing. Safe to call twice."""
        self._listeners.clear()
        self._listeners.cancel_pending()
        self._stop_observing()

    def _publish(self, status: ConnectivityStatus) -> None:
        self._status = status
        self._listeners.notify(status)

    # Subclass hooks; both must tolerate repeated calls.

    def _start_observing(self) -> None:
        pass

    def _stop_observing(self) -> None:
        pass


# =============================================================================
# Probing sensor
# =============================================================================


class ProbingSensor(StatusSensor):
    """Sensor driven by explicit online/offline signals plus active probing.

    Without a probe, quality is not measured: the sensor reports ``medium``
    while online.

    Args:
        probe: Link probe. ``None`` disables quality measurement.
        thresholds: Latency thresholds used to grade probe results.
        probe_interval_ms: Period of background probes while monitored.
        respect_data_saver: Never sample throughput.
        online: Initial online state.
        link_type: Initial link type.
    """

    def __init__(
        self,
        probe: Probe | None = None,
        *,
        thresholds: QualityThresholds | None = None,
        probe_interval_ms: float = DEFAULT_PROBE_INTERVAL_MS,
        respect_data_saver: bool = False,
        online: bool = True,
        link_type: LinkType = LinkType.UNKNOWN,
    ) -> None:
        super().__init__(ConnectivityStatus(is_online=online, link_type=link_type))
        self._probe = probe
        self._thresholds = thresholds or QualityThresholds()
        self._probe_interval = probe_interval_ms / 1000
        self._respect_data_saver = respect_data_saver

        # Bumped on every online/offline signal; probe cycles started under
        # an older generation are discarded.
        self._generation = 0
        self._probe_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(
        cls,
        config: NetSmartConfig,
        probe: Probe | None = None,
        online: bool = True,
    ) -> ProbingSensor:
        if probe is None and config.enable_quality_probing:
            probe = make_probe(config.probe_endpoint)
        return cls(
            probe,
            thresholds=config.quality_thresholds,
            probe_interval_ms=config.probe_interval_ms,
            respect_data_saver=config.respect_data_saver,
            online=online,
        )

    @property
    def probing(self) -> bool:
        return self._probe is not None

    # -- Platform signals -----------------------------------------------------

    def handle_online(self, link_type: LinkType | None = None) -> None:
        """The platform reports a connection.

        Published immediately without a probe, otherwise after one probe
        cycle.
        """
        self._generation += 1
        link = link_type if link_type is not None else self._status.link_type
        if not self.probing:
            self._publish(
                self._status.evolve(
                    is_online=True,
                    quality=NetworkQuality.MEDIUM,
                    link_type=link,
                    latency_ms=None,
                    throughput_bps=None,
                )
            )
            return
        # Mark online before measuring so the cycle below is allowed to run
        self._status = self._status.evolve(is_online=True, link_type=link)
        self._fire_task(self._refresh())

    def handle_offline(self) -> None:
        """The platform reports no connection. Published immediately."""
        self._generation += 1
        self._publish(
            self._status.evolve(
                is_online=False,
                quality=NetworkQuality.WEAK,
                latency_ms=None,
                throughput_bps=None,
            )
        )

    # -- Measurement ----------------------------------------------------------

    async def get_status(self) -> ConnectivityStatus:
        if self.probing and self._status.is_online:
            await self._refresh()
        return self._status

    async def _refresh(self) -> ConnectivityStatus | None:
        """Run one probe cycle and publish the graded result.

        Returns ``None`` when the cycle was skipped or went stale.
        """
        if self._probe is None or not self._status.is_online:
            return None

        generation = self._generation
        latency, throughput = await self._measure(self._probe)
        if generation != self._generation or not self._status.is_online:
            logger.debug("Discarding stale probe result (%.1fms)", latency)
            return None

        status = self._status.evolve(
            quality=classify(latency, self._thresholds),
            latency_ms=latency,
            throughput_bps=throughput,
        )
        logger.debug(
            "Probe: latency=%.1fms quality=%s", latency, status.quality.value
        )
        self._publish(status)
        return status

    async def _measure(self, probe: Probe) -> tuple[float, float | None]:
        try:
            latency = await probe.measure_latency()
        except Exception as exc:
            logger.warning("Latency probe raised: %s", exc)
            return math.inf, None

        if self._respect_data_saver or not math.isfinite(latency):
            return latency, None
        try:
            throughput = await probe.measure_throughput()
        except Exception as exc:
            logger.warning("Throughput probe raised: %s", exc)
            throughput = 0.0
        return latency, throughput

    async def _probe_loop(self) -> None:
        """Re-probe every interval while monitored."""
        while True:
            try:
                await asyncio.sleep(self._probe_interval)
            except asyncio.CancelledError:
                return
            try:
                await self._refresh()
            except asyncio.CancelledError:
                return
            except Exception as exc:
                logger.warning("Probe cycle failed: %s", exc)

    # -- Observation hooks ----------------------------------------------------

    def _start_observing(self) -> None:
        if self.probing and self._probe_task is None:
            self._probe_task = asyncio.ensure_future(self._probe_loop())

    def _stop_observing(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            self._probe_task = None

    def stop_monitoring(self) -> None:
        super().stop_monitoring()
        for task in self._background_tasks:
            task.cancel()
        self._background_tasks.clear()

    async def aclose(self) -> None:
        """Stop monitoring and release the probe."""
        self.stop_monitoring()
        if self._probe is not None:
            await self._probe.aclose()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)


# =============================================================================
# Platform sensor
# =============================================================================


@dataclass(frozen=True)
class PlatformConnectivity:
    """Raw connectivity report from a platform provider.

    Attributes:
        is_connected: A network interface is up.
        is_internet_reachable: ``None`` while the platform has not decided.
        type: Platform link name, e.g. ``"wifi"``, ``"cellular"``, ``"4g"``.
        cellular_generation: ``"2g"`` .. ``"5g"`` when known.
        wifi_strength: Wifi signal strength in dBm when known.
    """

    is_connected: bool
    is_internet_reachable: bool | None = None
    type: str = "unknown"
    cellular_generation: str | None = None
    wifi_strength: int | None = None


@runtime_checkable
class ConnectivityProvider(Protocol):
    async def fetch(self) -> PlatformConnectivity: ...

    def add_listener(
        self, callback: Callable[[PlatformConnectivity], None]
    ) -> Callable[[], None]: ...


_CELLULAR_NAMES = frozenset({"cellular", "2g", "3g", "4g", "5g"})


def map_link_type(name: str | None) -> LinkType:
    name = (name or "").lower()
    if name == "wifi":
        return LinkType.WIFI
    if name in _CELLULAR_NAMES:
        return LinkType.CELLULAR
    if name == "ethernet":
        return LinkType.ETHERNET
    if name in ("none", "unknown"):
        return LinkType.NONE
    return LinkType.UNKNOWN


def estimate_quality(report: PlatformConnectivity) -> NetworkQuality:
    """Best-effort grade from platform details, no measurement involved."""
    if not report.is_connected:
        return NetworkQuality.WEAK

    kind = (report.type or "").lower()
    if kind == "cellular" and report.cellular_generation:
        generation = report.cellular_generation.lower()
        if generation in ("5g", "4g"):
            return NetworkQuality.STRONG
        if generation == "3g":
            return NetworkQuality.MEDIUM
        return NetworkQuality.WEAK

    if kind == "wifi" and report.wifi_strength is not None:
        if report.wifi_strength >= WIFI_STRONG_DBM:
            return NetworkQuality.STRONG
        if report.wifi_strength >= WIFI_MEDIUM_DBM:
            return NetworkQuality.MEDIUM
        return NetworkQuality.WEAK

    if kind in ("wifi", "ethernet"):
        return NetworkQuality.STRONG
    return NetworkQuality.MEDIUM


class PlatformSensor(StatusSensor):
    """Sensor backed by a platform :class:`ConnectivityProvider`."""

    def __init__(self, provider: ConnectivityProvider) -> None:
        super().__init__()
        self._provider = provider
        self._provider_unsubscribe: Callable[[], None] | None = None

    async def get_status(self) -> ConnectivityStatus:
        report = await self._provider.fetch()
        self._publish(self._to_status(report))
        return self._status

    def _on_report(self, report: PlatformConnectivity) -> None:
        self._publish(self._to_status(report))

    @staticmethod
    def _to_status(report: PlatformConnectivity) -> ConnectivityStatus:
        return ConnectivityStatus(
            is_online=report.is_connected and report.is_internet_reachable is not False,
            quality=estimate_quality(report),
            link_type=map_link_type(report.type),
        )

    def _start_observing(self) -> None:
        if self._provider_unsubscribe is None:
            self._provider_unsubscribe = self._provider.add_listener(self._on_report)

    def _stop_observing(self) -> None:
        if self._provider_unsubscribe is not None:
            unsubscribe, self._provider_unsubscribe = self._provider_unsubscribe, None
            unsubscribe()
