# =============================================================================
# NetSmart -- Quality Probes
# =============================================================================
#
# Active latency / throughput measurement against a reachable endpoint.
# Probes never raise: failure is reported as infinite latency or zero
# throughput and graded weak by the classifier.
# =============================================================================

from __future__ import annotations

import asyncio
import math
import time
from typing import Protocol, runtime_checkable

import httpx
import websockets
import websockets.asyncio.client
from websockets.exceptions import WebSocketException

from ._logging import logger
from .constants import (
    DEFAULT_PROBE_ENDPOINT,
    PROBE_LATENCY_TIMEOUT,
    PROBE_THROUGHPUT_TIMEOUT,
)


@runtime_checkable
class Probe(Protocol):
    """Measures the current link."""

    async def measure_latency(self) -> float:
        """Round trip in ms, ``math.inf`` on failure."""
        ...

    async def measure_throughput(self) -> float:
        """Bytes per second, ``0.0`` on failure."""
        ...

    async def aclose(self) -> None: ...


class HttpProbe:
    """HEAD for latency, GET for throughput.

    Args:
        endpoint: URL to probe. Should be small and cache-busting.
        latency_timeout: Seconds before a HEAD counts as failed.
        throughput_timeout: Seconds before a GET counts as failed.
        client: Shared ``httpx.AsyncClient``. One is created lazily and
            owned by the probe if omitted.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_PROBE_ENDPOINT,
        *,
        latency_timeout: float = PROBE_LATENCY_TIMEOUT,
        throughput_timeout: float = PROBE_THROUGHPUT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._latency_timeout = latency_timeout
        self._throughput_timeout = throughput_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def measure_latency(self) -> float:
        client = self._get_client()
        start = time.perf_counter()
        try:
            await client.head(
                self._endpoint,
                timeout=self._latency_timeout,
                headers={"Cache-Control": "no-cache"},
            )
        except (httpx.HTTPError, asyncio.TimeoutError, OSError) as exc:
            logger.debug("Latency probe to %s failed: %s", self._endpoint, exc)
            return math.inf
        return (time.perf_counter() - start) * 1000

    async def measure_throughput(self) -> float:
        client = self._get_client()
        start = time.perf_counter()
        try:
            response = await client.get(
                self._endpoint,
                timeout=self._throughput_timeout,
                headers={"Cache-Control": "no-cache"},
            )
        except (httpx.HTTPError, asyncio.TimeoutError, OSError) as exc:
            logger.debug("Throughput probe to %s failed: %s", self._endpoint, exc)
            return 0.0
        elapsed = time.perf_counter() - start
        if elapsed <= 0:
            return 0.0
        return len(response.content) / elapsed

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class WebSocketProbe:
    """One ping/pong round trip over a fresh WebSocket connection."""

    def __init__(self, endpoint: str, *, timeout: float = PROBE_LATENCY_TIMEOUT) -> None:
        self._endpoint = endpoint
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def measure_latency(self) -> float:
        try:
            async with websockets.asyncio.client.connect(
                self._endpoint, open_timeout=self._timeout
            ) as ws:
                start = time.perf_counter()
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=self._timeout)
                return (time.perf_counter() - start) * 1000
        except (WebSocketException, asyncio.TimeoutError, OSError) as exc:
            logger.debug("WebSocket probe to %s failed: %s", self._endpoint, exc)
            return math.inf

    async def measure_throughput(self) -> float:
        # Not measurable without a cooperating server
        return 0.0

    async def aclose(self) -> None:
        return None


def make_probe(endpoint: str | None = None) -> Probe:
    """Pick a probe suited to *endpoint*'s scheme."""
    endpoint = endpoint or DEFAULT_PROBE_ENDPOINT
    if endpoint.startswith(("ws://", "wss://")):
        return WebSocketProbe(endpoint)
    return HttpProbe(endpoint)
