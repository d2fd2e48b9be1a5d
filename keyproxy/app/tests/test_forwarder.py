"""
Unit Tests for the Upstream Forwarder
======================================

Tests for keyproxy/app/proxy/forwarder.py, called directly without the app.

Test Coverage:
--------------
1. Body dropped for GET/HEAD, along with body-framing headers
2. Body streamed for other methods
3. Transport errors raised as UpstreamTransportError
4. Upstream response closed once the relayed stream finishes
5. Outbound request cancelled when the client disconnects first
"""

import asyncio

import httpx
import pytest

from keyproxy.app.proxy.errors import ClientDisconnectedError, UpstreamTransportError
from keyproxy.app.proxy.forwarder import forward_request


class StreamBody(httpx.AsyncByteStream):
    """Chunked upstream body that records whether it was closed"""

    def __init__(self, chunks):
        self._chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


async def _body(*chunks):
    for chunk in chunks:
        yield chunk


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _drain(response) -> bytes:
    return b"".join([chunk async for chunk in response.body_iterator])


# ============================================================================
# Request Body Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["GET", "HEAD", "get"])
async def test_bodyless_methods_drop_body(method):
    """Test that GET/HEAD never carry a body or its framing headers"""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, stream=StreamBody([]))

    headers = httpx.Headers({"content-length": "5", "transfer-encoding": "chunked", "accept": "*/*"})
    async with _client(handler) as client:
        response = await forward_request(
            client, method, "https://api.decart.ai/v1/jobs", headers, _body(b"quirk"), None
        )
        await _drain(response)

    assert seen[0].content == b""
    assert "content-length" not in seen[0].headers
    assert "transfer-encoding" not in seen[0].headers
    assert seen[0].headers["accept"] == "*/*"


@pytest.mark.asyncio
async def test_post_body_streamed():
    """Test that the inbound stream becomes the upstream body"""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, stream=StreamBody([b"created"]))

    async with _client(handler) as client:
        response = await forward_request(
            client,
            "POST",
            "https://api.kiriengine.app/api/v1/open/photo/image",
            httpx.Headers({"content-type": "application/octet-stream"}),
            _body(b"part-1,", b"part-2", b""),
            "https://editor.example.com",
        )
        body = await _drain(response)

    assert seen[0].method == "POST"
    assert seen[0].content == b"part-1,part-2"
    assert response.status_code == 201
    assert body == b"created"


# ============================================================================
# Response Relay Tests
# ============================================================================

@pytest.mark.asyncio
async def test_response_chunks_relayed_and_upstream_closed():
    """Test chunked relay and upstream close after the last chunk"""
    stream = StreamBody([b"frame-1", b"frame-2", b"frame-3"])

    def handler(request):
        return httpx.Response(200, headers={"content-type": "video/mp4"}, stream=stream)

    async with _client(handler) as client:
        response = await forward_request(
            client, "GET", "https://api.dev.runwayml.com/v1/tasks/t1/output",
            httpx.Headers(), None, None,
        )
        chunks = [chunk async for chunk in response.body_iterator]

    assert chunks == [b"frame-1", b"frame-2", b"frame-3"]
    assert stream.closed is True
    raw = dict(response.raw_headers)
    assert raw[b"content-type"] == b"video/mp4"
    assert raw[b"access-control-allow-origin"] == b"*"


# ============================================================================
# Transport Error Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    httpx.ConnectError("connection refused"),
    httpx.ReadTimeout("read timed out"),
    httpx.UnsupportedProtocol("Request URL has an unsupported protocol 'ftp://'."),
])
async def test_transport_errors_raised(error):
    """Test that failures to reach the upstream become UpstreamTransportError"""
    def handler(request):
        raise error

    async with _client(handler) as client:
        with pytest.raises(UpstreamTransportError) as exc_info:
            await forward_request(
                client, "GET", "https://api.worldlabs.ai/marble/v1/worlds",
                httpx.Headers(), None, None,
            )

    assert exc_info.value.status_code == 502
    assert exc_info.value.message == str(error)


@pytest.mark.asyncio
async def test_upstream_error_status_not_raised():
    """Test that a 500 from the upstream is relayed, not raised"""
    def handler(request):
        return httpx.Response(500, stream=StreamBody([b"upstream broke"]))

    async with _client(handler) as client:
        response = await forward_request(
            client, "GET", "https://api.decart.ai/v1/jobs", httpx.Headers(), None, None
        )
        body = await _drain(response)

    assert response.status_code == 500
    assert body == b"upstream broke"


# ============================================================================
# Client Disconnect Tests
# ============================================================================

@pytest.mark.asyncio
async def test_disconnect_before_upstream_headers_cancels_send():
    """Test that a client leaving mid-wait aborts the outbound request"""
    started = asyncio.Event()
    cancelled = []

    async def handler(request):
        started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.append(request.url.path)
            raise
        return httpx.Response(200)

    async def is_disconnected():
        return started.is_set()

    async with _client(handler) as client:
        with pytest.raises(ClientDisconnectedError) as exc_info:
            await forward_request(
                client, "GET", "https://api.dev.runwayml.com/v1/tasks/t1",
                httpx.Headers(), None, None,
                is_disconnected=is_disconnected,
            )

    assert cancelled == ["/v1/tasks/t1"]
    assert exc_info.value.status_code == 499


@pytest.mark.asyncio
async def test_connected_client_gets_slow_response():
    """Test that a slow upstream is still relayed while the client waits"""
    async def handler(request):
        await asyncio.sleep(0.25)
        return httpx.Response(200, stream=StreamBody([b"rendered"]))

    async def is_disconnected():
        return False

    async with _client(handler) as client:
        response = await forward_request(
            client, "GET", "https://api.decart.ai/v1/jobs/j1",
            httpx.Headers(), None, None,
            is_disconnected=is_disconnected,
        )
        body = await _drain(response)

    assert response.status_code == 200
    assert body == b"rendered"


@pytest.mark.asyncio
async def test_disconnect_checks_wait_for_request_body():
    """Test that disconnect polling starts only after the body is sent"""
    consumed = []
    checks = []
    seen = []

    async def body():
        for chunk in (b"chunk-1,", b"chunk-2"):
            await asyncio.sleep(0)
            yield chunk
        consumed.append(True)

    async def handler(request):
        seen.append(request.content)
        await asyncio.sleep(0.25)
        return httpx.Response(202, stream=StreamBody([]))

    async def is_disconnected():
        checks.append(bool(consumed))
        return False

    async with _client(handler) as client:
        response = await forward_request(
            client, "POST", "https://api.worldlabs.ai/marble/v1/worlds",
            httpx.Headers(), body(), None,
            is_disconnected=is_disconnected,
        )
        await _drain(response)

    assert seen == [b"chunk-1,chunk-2"]
    assert checks
    assert all(checks)
