"""Tests for the httpx transport."""

import asyncio
import json

import httpx
import pytest

from netsmart.cancellation import CancellationToken
from netsmart.errors import (
    CallCancelledError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from netsmart.transport import HttpxTransport, Transport
from netsmart.types import RequestOptions


def _transport(handler):
    return HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpxTransport:
    @pytest.mark.asyncio
    async def test_returns_response_for_any_status(self):
        transport = _transport(lambda request: httpx.Response(404, content=b"missing"))
        response = await transport.perform_request("https://api.test/x", RequestOptions())
        assert response.status_code == 404
        assert response.status_text == "Not Found"
        assert response.text() == "missing"
        assert not response.ok

    @pytest.mark.asyncio
    async def test_json_body_and_headers(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["content_type"] = request.headers["content-type"]
            seen["custom"] = request.headers["x-trace"]
            return httpx.Response(201, json={"ok": True})

        options = RequestOptions(method="post", headers={"X-Trace": "t1"}, body={"a": 1})
        response = await _transport(handler).perform_request("https://api.test/", options)
        assert seen == {
            "method": "POST",
            "body": {"a": 1},
            "content_type": "application/json",
            "custom": "t1",
        }
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_raw_body_sent_verbatim(self):
        seen = {}

        def handler(request):
            seen["content"] = request.content
            return httpx.Response(200)

        options = RequestOptions(method="PUT", body=b"\x00\x01")
        await _transport(handler).perform_request("https://api.test/", options)
        assert seen["content"] == b"\x00\x01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (httpx.ConnectError, TransportConnectError),
            (httpx.ReadTimeout, TransportTimeoutError),
            (httpx.RemoteProtocolError, TransportError),
        ],
    )
    async def test_errors_mapped(self, exc, expected):
        def handler(request):
            raise exc("failure", request=request)

        with pytest.raises(expected):
            await _transport(handler).perform_request("https://api.test/", RequestOptions())

    @pytest.mark.asyncio
    async def test_cancelled_token(self):
        token = CancellationToken()
        token.cancel("gone")
        transport = _transport(lambda request: httpx.Response(200))
        with pytest.raises(CallCancelledError):
            await transport.perform_request("https://api.test/", RequestOptions(), token)

    @pytest.mark.asyncio
    async def test_cancel_mid_flight(self):
        async def handler(request):
            await asyncio.sleep(60)
            return httpx.Response(200)

        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(CallCancelledError):
            await asyncio.wait_for(
                _transport(handler).perform_request("https://api.test/", RequestOptions(), token),
                timeout=2,
            )

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        transport = HttpxTransport()
        assert isinstance(transport, Transport)
        async with transport:
            client = transport._get_client()
        assert client.is_closed
