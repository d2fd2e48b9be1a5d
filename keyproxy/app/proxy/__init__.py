"""
Proxy Package
=============

This package implements the credential-injecting proxy that forwards
browser requests to third-party APIs without exposing their keys.

Main Components:
----------------
- routes.py: FastAPI catch-all router (preflight, health, dispatch)
- routing.py: Provider route table and /fetch resolution
- providers.py: Provider credential header templates
- headers.py: Request header stripping, credential overlay, CORS headers
- forwarder.py: Streaming upstream request and response relay
- errors.py: Locally handled error types

Security Features:
------------------
- Client/edge identifying headers stripped before forwarding
- Server-held credentials always override client-sent auth headers
- Secrets never leave the server or appear in logs

Usage:
------
    from keyproxy.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .routes import proxy_router

__all__ = ["proxy_router"]
