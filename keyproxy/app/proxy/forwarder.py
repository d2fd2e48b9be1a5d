"""
Upstream forwarding and response relay.

Sends the prepared request with ``stream=True`` and hands the upstream body
to a StreamingResponse chunk by chunk, so large uploads and downloads are
never held in memory. If the client goes away while the upstream is still
working, the outbound request is cancelled. Once a response exists it is
closed when the stream ends or the client disconnects.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from .errors import ClientDisconnectedError, UpstreamTransportError
from .headers import relay_response_headers

logger = logging.getLogger("keyproxy.proxy.forwarder")

# Methods that never carry a request body upstream
BODYLESS_METHODS = frozenset({"GET", "HEAD"})

# Fixed upstream timeout; generous read window for media generation APIs
UPSTREAM_TIMEOUT = httpx.Timeout(120.0, connect=10.0)

# Seconds between client disconnect checks while waiting for upstream headers
DISCONNECT_POLL_INTERVAL = 0.1

DisconnectCheck = Callable[[], Awaitable[bool]]


async def _relay_body(upstream_response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield raw upstream bytes, closing the upstream response when done."""
    try:
        async for chunk in upstream_response.aiter_raw():
            yield chunk
    finally:
        await upstream_response.aclose()


async def _track_body(body: AsyncIterator[bytes], finished: asyncio.Event) -> AsyncIterator[bytes]:
    try:
        async for chunk in body:
            yield chunk
    finally:
        finished.set()


async def _wait_for_disconnect(is_disconnected: DisconnectCheck, body_sent: asyncio.Event) -> None:
    # Checking for a disconnect reads the inbound message queue, which would
    # steal chunks from a body that is still being streamed upstream
    await body_sent.wait()
    while not await is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def _send_unless_disconnected(
    client: httpx.AsyncClient,
    upstream_request: httpx.Request,
    is_disconnected: DisconnectCheck,
    body_sent: asyncio.Event,
) -> httpx.Response:
    """
    Send the upstream request, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnectedError: The client went away before response headers
    """
    send_task = asyncio.ensure_future(client.send(upstream_request, stream=True))
    watch_task = asyncio.ensure_future(_wait_for_disconnect(is_disconnected, body_sent))
    try:
        await asyncio.wait({send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (send_task, watch_task):
            if not task.done():
                task.cancel()
        await asyncio.wait({send_task, watch_task})

    if send_task.cancelled():
        watch_task.result()
        logger.info("Client disconnected before upstream responded")
        raise ClientDisconnectedError()

    return send_task.result()


async def forward_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: httpx.Headers,
    body: Optional[AsyncIterator[bytes]],
    origin: Optional[str],
    is_disconnected: Optional[DisconnectCheck] = None,
) -> StreamingResponse:
    """
    Forward a request upstream and relay the response.

    Upstream 4xx/5xx responses are relayed unchanged; only failures to
    reach the upstream at all are raised.

    Args:
        client: Shared upstream HTTP client
        method: Inbound request method
        url: Absolute upstream URL
        headers: Sanitized outbound headers, credentials already applied
        body: Inbound body stream; dropped for GET and HEAD
        origin: Inbound Origin header for the CORS response headers
        is_disconnected: Coroutine function reporting whether the client has
            gone away; when given, the upstream request is cancelled on disconnect

    Returns:
        StreamingResponse with upstream status, headers and body

    Raises:
        UpstreamTransportError: DNS, connection, TLS, timeout or bad URL
        ClientDisconnectedError: The client went away before the upstream responded
    """
    method = method.upper()
    content = body
    if method in BODYLESS_METHODS:
        content = None
        # A body-framing header without a body would stall the upstream
        headers.pop("content-length", None)
        headers.pop("transfer-encoding", None)

    body_sent = asyncio.Event()
    if content is None:
        body_sent.set()
    else:
        content = _track_body(content, body_sent)

    try:
        upstream_request = client.build_request(
            method,
            url,
            headers=headers,
            content=content,
            timeout=UPSTREAM_TIMEOUT,
        )
        if is_disconnected is None:
            upstream_response = await client.send(upstream_request, stream=True)
        else:
            upstream_response = await _send_unless_disconnected(
                client, upstream_request, is_disconnected, body_sent
            )
    except ClientDisconnect as e:
        logger.info("Client disconnected during request body upload")
        raise ClientDisconnectedError() from e
    except (httpx.RequestError, httpx.InvalidURL) as e:
        # Target URLs may carry pre-signed credentials; log the error class only
        logger.warning(
            f"Upstream transport error: {type(e).__name__}",
            extra={"method": method},
        )
        raise UpstreamTransportError(str(e) or type(e).__name__) from e

    logger.debug(f"Upstream responded {upstream_response.status_code} to {method}")

    response = StreamingResponse(
        _relay_body(upstream_response),
        status_code=upstream_response.status_code,
        # Covers a disconnect before the body iterator ever started
        background=BackgroundTask(upstream_response.aclose),
    )
    response.raw_headers = relay_response_headers(upstream_response.headers, origin)
    return response
