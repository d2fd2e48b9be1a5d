"""
Credential Proxy Application
============================

FastAPI service that sits between browser clients and third-party media
APIs (Runway, World Labs Marble, Decart, KIRI Engine), holding the API keys
server-side and relaying responses with permissive CORS headers.

Modules:
- main: application factory, lifespan, logging, exception handlers
- config: pydantic settings (provider secrets, server options)
- models: JSON response bodies produced locally
- proxy: routing, header handling and upstream forwarding
"""
