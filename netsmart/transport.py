# =============================================================================
# NetSmart -- HTTP Transport
# =============================================================================
#
# The coordinator never talks HTTP itself; it hands each attempt to a
# Transport.  HttpxTransport is the default, backed by httpx.AsyncClient.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

import httpx

from ._logging import logger
from .cancellation import CancellationToken, run_cancellable
from .constants import DEFAULT_REQUEST_TIMEOUT
from .errors import TransportConnectError, TransportError, TransportTimeoutError
from .types import RequestOptions, TransportResponse


@runtime_checkable
class Transport(Protocol):
    """Performs one attempt of an HTTP call.

    Must return a :class:`TransportResponse` for any well-formed response,
    whatever its status; raise :class:`TransportError` on network failure and
    :class:`CallCancelledError` when *token* fires.
    """

    async def perform_request(
        self,
        url: str,
        options: RequestOptions,
        token: CancellationToken | None = None,
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport over a shared ``httpx.AsyncClient``.

    Args:
        client: Client to use. One is created and owned by the transport if
            omitted.
        timeout: Default per-request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def perform_request(
        self,
        url: str,
        options: RequestOptions,
        token: CancellationToken | None = None,
    ) -> TransportResponse:
        client = self._get_client()
        request_kwargs: dict[str, Any] = {
            "headers": options.headers,
            "timeout": options.timeout if options.timeout is not None else self._timeout,
        }
        body = options.body
        if body is not None:
            if isinstance(body, (bytes, str)):
                request_kwargs["content"] = body
            else:
                request_kwargs["content"] = json.dumps(body)
                if not any(k.lower() == "content-type" for k in options.headers):
                    request_kwargs["headers"] = {
                        **options.headers,
                        "Content-Type": "application/json",
                    }

        try:
            response = await run_cancellable(
                client.request(options.method.upper(), url, **request_kwargs),
                token,
            )
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"{options.method} {url} timed out: {exc}") from exc
        except httpx.ConnectError as exc:
            raise TransportConnectError(f"Cannot connect to {url}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{options.method} {url} failed: {exc}") from exc

        logger.debug("%s %s -> %d", options.method, url, response.status_code)
        return TransportResponse(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            content=response.content,
            url=str(response.url),
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()
