"""
Route resolution.

Maps an inbound request path onto an upstream URL. Provider routes are a
fixed, ordered table of literal path prefixes; the first prefix that the path
starts with wins. ``/fetch`` is the generic fallback and takes its target from
the ``url`` query parameter.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import ClientInputError
from .providers import Provider

logger = logging.getLogger("keyproxy.proxy.routing")

FETCH_PATH = "/fetch"
HEALTH_PATH = "/health"


@dataclass(frozen=True)
class Route:
    """Provider route: a path prefix and the upstream base it maps to"""

    prefix: str
    upstream_base: str
    provider: Provider


@dataclass(frozen=True)
class ResolvedTarget:
    """Absolute upstream URL plus the route it came from (None for /fetch)"""

    url: str
    route: Optional[Route] = None


# Prefixes keep their trailing slash so "/runway/tasks" leaves "tasks".
ROUTE_TABLE: Tuple[Route, ...] = (
    Route("/runway/", "https://api.dev.runwayml.com/v1/", Provider.RUNWAY),
    Route("/marble/", "https://api.worldlabs.ai/marble/v1/", Provider.MARBLE),
    Route("/decart/", "https://api.decart.ai/v1/", Provider.DECART),
    Route("/kiri/", "https://api.kiriengine.app/api/", Provider.KIRI),
)


def route_prefixes() -> List[str]:
    """Declared provider prefixes, in table order."""
    return [route.prefix for route in ROUTE_TABLE]


def resolve_route(path: str, query: str = "") -> Optional[ResolvedTarget]:
    """
    Resolve a request path against the provider route table.

    Args:
        path: Request path as received, percent-encoding intact,
            e.g. "/runway/image_to_video"
        query: Raw query string without the leading "?"

    Returns:
        ResolvedTarget with ``base + remainder + ?query``, or None if no
        prefix matches
    """
    for route in ROUTE_TABLE:
        if path.startswith(route.prefix):
            remainder = path[len(route.prefix):]
            search = f"?{query}" if query else ""
            logger.debug(f"Resolved {route.prefix} route for provider {route.provider.value}")
            return ResolvedTarget(url=f"{route.upstream_base}{remainder}{search}", route=route)
    return None


def resolve_fetch_target(path: str, url_param: Optional[str]) -> Optional[ResolvedTarget]:
    """
    Resolve the generic fetch route.

    The ``url`` parameter is used verbatim as the absolute target URL.

    Returns:
        ResolvedTarget without a route, or None if ``path`` is not /fetch

    Raises:
        ClientInputError: If ``path`` is /fetch and ``url`` is missing or empty
    """
    if path != FETCH_PATH:
        return None
    if not url_param:
        raise ClientInputError("Missing url param")
    return ResolvedTarget(url=url_param)
