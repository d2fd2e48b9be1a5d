"""
Proxy Routes - Credential Injection and Forwarding
==================================================

This module implements the single catch-all endpoint that keeps upstream
API keys on the server. Browser clients call a provider prefix on this
service; the request is forwarded with the provider's credentials added.

Request Flow:
-------------
1. OPTIONS on any path answers the CORS preflight (204, no body)
2. /health reports the declared provider routes
3. Provider prefix match: strip client/edge headers, inject credentials,
   forward, relay
4. /fetch?url=...: same forwarding to an arbitrary URL, no credentials
5. Anything else is 404

Endpoints:
----------
- /runway/*, /marble/*, /decart/*, /kiri/*: provider proxies
- /fetch?url=<absolute-url>: generic CORS proxy
- /health: liveness check
"""

import logging
from urllib.parse import quote

import httpx
from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.types import Receive, Scope, Send

from ..config import get_settings
from ..models import HealthResponse
from .errors import RouteNotFoundError
from .forwarder import forward_request
from .headers import apply_credentials, cors_headers, sanitize_request_headers
from .providers import credential_headers
from .routing import HEALTH_PATH, resolve_fetch_target, resolve_route, route_prefixes

logger = logging.getLogger("keyproxy.proxy.routes")

# Create router
proxy_router = APIRouter()

# Characters kept literal when rebuilding a path the server did not send raw
PATH_SAFE_CHARS = "/-._~!$&'()*+,;=:@"


# ============================================================================
# Dependencies
# ============================================================================

def get_upstream_client(request: Request) -> httpx.AsyncClient:
    """
    Get the shared upstream HTTP client from app state.

    Args:
        request: FastAPI request object

    Returns:
        httpx.AsyncClient created during application startup
    """
    if not hasattr(request.app.state, "app_state"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not initialized"
        )

    client = request.app.state.app_state.upstream_client
    if not client:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not available"
        )

    return client


def raw_request_path(request: Request) -> str:
    """
    Request path exactly as the client sent it, percent-encoding intact.

    An encoded "?", "/" or "#" in a provider path must reach the upstream
    still encoded.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return quote(request.url.path, safe=PATH_SAFE_CHARS)
    return raw_path.split(b"?", 1)[0].decode("latin-1")


def first_query_value(request: Request, name: str):
    """First value of a repeated query parameter, or None."""
    values = request.query_params.getlist(name)
    return values[0] if values else None


# ============================================================================
# Local Responses
# ============================================================================

def preflight_response(origin) -> Response:
    """Empty 204 carrying only the CORS headers."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(origin))


def health_response(origin) -> JSONResponse:
    """Liveness payload listing the provider prefixes."""
    health = HealthResponse(ok=True, routes=route_prefixes())
    return JSONResponse(content=health.model_dump(), headers=cors_headers(origin))


# ============================================================================
# Proxy Endpoint
# ============================================================================

async def proxy_request(request: Request):
    """
    Dispatch a request through the proxy decision tree.

    Args:
        request: Incoming request, any HTTP method

    Returns:
        Preflight, health, or the relayed upstream response

    Raises:
        ClientInputError: /fetch without a url parameter
        RouteNotFoundError: No provider or reserved route matched
        UpstreamTransportError: Upstream unreachable
        ClientDisconnectedError: Client left before the upstream responded
    """
    origin = request.headers.get("origin")

    if request.method == "OPTIONS":
        return preflight_response(origin)

    request_path = raw_request_path(request)
    if request_path == HEALTH_PATH:
        return health_response(origin)

    injected = {}
    target = resolve_route(request_path, request.url.query)
    if target is not None:
        injected = credential_headers(target.route.provider, get_settings().secret_set())
    else:
        target = resolve_fetch_target(request_path, first_query_value(request, "url"))

    if target is None:
        raise RouteNotFoundError()

    outbound_headers = apply_credentials(
        sanitize_request_headers(request.headers.items()),
        injected,
    )

    logger.info(
        "Forwarding request",
        extra={
            "method": request.method,
            "route": target.route.prefix if target.route else request_path,
        }
    )

    return await forward_request(
        get_upstream_client(request),
        request.method,
        target.url,
        outbound_headers,
        request.stream(),
        origin,
        is_disconnected=request.is_disconnected,
    )


class ProxyEndpoint:
    """
    ASGI endpoint for the catch-all route.

    Registered as an ASGI app rather than a function endpoint so the route
    has no method restriction: WebDAV and other extension methods are
    forwarded like any other.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await proxy_request(request)
        await response(scope, receive, send)


proxy_router.add_route("/{path:path}", ProxyEndpoint(), include_in_schema=False)
