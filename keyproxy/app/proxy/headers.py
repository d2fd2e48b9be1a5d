"""
Header handling for proxied requests and responses.

Request side: client headers are copied minus a deny-list of headers that
identify the client or the edge, or that are scoped to the inbound
connection. Provider credentials are then set on top, replacing any client
value of the same name.

Response side: upstream headers are relayed and the CORS set is applied
last so it always wins.

All comparisons are case-insensitive; ``httpx.Headers`` does this natively
and ``headers[name] = value`` replaces every existing value of ``name``.
Values are carried as latin-1 so non-ASCII bytes pass through untouched.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

# Request headers never forwarded upstream.
STRIP_HEADERS: frozenset = frozenset({
    "host",
    "origin",
    "referer",
    "cf-connecting-ip",
    "cf-ipcountry",
    "cf-ray",
    "cf-visitor",
    "x-forwarded-for",
    "x-forwarded-proto",
    "x-real-ip",
    "connection",
    "keep-alive",
})

# Response framing headers owned by the ASGI server, not relayed.
HOP_BY_HOP_RESPONSE_HEADERS: frozenset = frozenset({
    "connection",
    "keep-alive",
    "transfer-encoding",
})

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_MAX_AGE = "86400"


def cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """
    Build the CORS headers attached to every response.

    Args:
        origin: Value of the request's Origin header, if any

    Returns:
        The five Access-Control-* headers; the origin is echoed back,
        or "*" when the request had none
    """
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": "*",
        "Access-Control-Expose-Headers": "*",
        "Access-Control-Max-Age": CORS_MAX_AGE,
    }


def sanitize_request_headers(items: Iterable[Tuple[str, str]]) -> httpx.Headers:
    """
    Copy inbound headers for the upstream request, dropping deny-listed ones.

    Args:
        items: (name, value) pairs as received; repeated names are kept

    Returns:
        Outbound headers with values unmodified
    """
    # ASGI servers decode header bytes as latin-1; encoding back the same
    # way reproduces the bytes the client sent
    return httpx.Headers(
        [(name, value) for name, value in items if name.lower() not in STRIP_HEADERS],
        encoding="latin-1",
    )


def apply_credentials(headers: httpx.Headers, injected: Mapping[str, str]) -> httpx.Headers:
    """Set injected headers, replacing any client-sent header of the same name."""
    for name, value in injected.items():
        headers[name] = value
    return headers


def relay_response_headers(upstream: httpx.Headers, origin: Optional[str]) -> List[Tuple[bytes, bytes]]:
    """
    Headers for the relayed response: upstream headers, then CORS on top.

    Returned as ASGI raw headers (lowercase names) so that repeated upstream
    headers such as Set-Cookie are relayed one line each.
    """
    relayed = httpx.Headers(
        [
            (name, value) for name, value in upstream.raw
            if name.lower().decode("latin-1") not in HOP_BY_HOP_RESPONSE_HEADERS
        ],
        encoding="latin-1",
    )
    for name, value in cors_headers(origin).items():
        relayed[name] = value
    return [(name.lower(), value) for name, value in relayed.raw]
