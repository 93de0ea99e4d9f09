"""Shared fakes and fixtures for NetSmart tests."""

import asyncio

import pytest

from netsmart.sensors import PlatformConnectivity, StatusSensor
from netsmart.types import (
    ConnectivityStatus,
    LinkType,
    NetworkQuality,
    TransportResponse,
)


def make_response(status_code=200, content=b"", url="https://api.test/"):
    reasons = {200: "OK", 404: "Not Found", 429: "Too Many Requests", 503: "Service Unavailable"}
    return TransportResponse(
        status_code=status_code,
        status_text=reasons.get(status_code, ""),
        content=content,
        url=url,
    )


async def settle(rounds=20):
    """Let scheduled background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSensor(StatusSensor):
    """Sensor whose status the test pushes by hand."""

    def __init__(self, online=True, quality=NetworkQuality.STRONG, link_type=LinkType.WIFI):
        super().__init__(
            ConnectivityStatus(is_online=online, quality=quality, link_type=link_type)
        )
        self.fail = False
        self.observing = False
        self.get_status_calls = 0

    async def get_status(self):
        self.get_status_calls += 1
        if self.fail:
            raise RuntimeError("sensor unavailable")
        return self._status

    def push(self, **changes):
        self._publish(self._status.evolve(**changes))

    def go_offline(self):
        self.push(is_online=False, quality=NetworkQuality.WEAK)

    def go_online(self, quality=NetworkQuality.STRONG):
        self.push(is_online=True, quality=quality)

    def _start_observing(self):
        self.observing = True

    def _stop_observing(self):
        self.observing = False


class FakeTransport:
    """Transport returning scripted results in order, then 200s.

    A result may be a TransportResponse or an exception instance to raise.
    Set ``gate`` to an asyncio.Event to hold requests until it is set.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []
        self.closed = False
        self.gate = None

    async def perform_request(self, url, options, token=None):
        self.calls.append((url, options))
        if token is not None:
            token.raise_if_cancelled()
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if self.results else make_response(url=url)
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self):
        self.closed = True

    @property
    def urls(self):
        return [url for url, _ in self.calls]


class FakeProbe:
    """Probe replaying scripted latencies; the last value repeats."""

    def __init__(self, latencies=(50.0,), throughput=2048.0):
        self.latencies = list(latencies)
        self.throughput = throughput
        self.latency_calls = 0
        self.throughput_calls = 0
        self.closed = False
        self.gate = None

    async def measure_latency(self):
        self.latency_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        value = self.latencies.pop(0) if len(self.latencies) > 1 else self.latencies[0]
        if isinstance(value, BaseException):
            raise value
        return value

    async def measure_throughput(self):
        self.throughput_calls += 1
        return self.throughput

    async def aclose(self):
        self.closed = True


class FakeProvider:
    """Platform connectivity provider driven by the test."""

    def __init__(self, report=None):
        self.report = report or PlatformConnectivity(
            is_connected=True, is_internet_reachable=True, type="wifi"
        )
        self.listeners = []

    async def fetch(self):
        return self.report

    def add_listener(self, callback):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    def emit(self, report):
        self.report = report
        for callback in list(self.listeners):
            callback(report)


@pytest.fixture()
def sensor():
    return FakeSensor()


@pytest.fixture()
def offline_sensor():
    return FakeSensor(online=False)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def probe():
    return FakeProbe()


@pytest.fixture()
def provider():
    return FakeProvider()

