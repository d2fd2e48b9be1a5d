"""
Proxy error types.

Each error maps to exactly one locally produced response. Upstream HTTP
errors are never raised as exceptions; they are relayed as-is.
"""


class ProxyError(Exception):
    """Base exception for locally handled proxy failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClientInputError(ProxyError):
    """Required request input is missing (e.g. /fetch without url)"""

    status_code = 400


class RouteNotFoundError(ProxyError):
    """Path matches neither a provider prefix nor a reserved route"""

    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class UpstreamTransportError(ProxyError):
    """The upstream could not be reached (DNS, connect, TLS, timeout)"""

    status_code = 502


class ClientDisconnectedError(ProxyError):
    """The client went away before the upstream responded"""

    # nginx convention; the response is never seen by the client
    status_code = 499

    def __init__(self, message: str = "Client closed request"):
        super().__init__(message)
