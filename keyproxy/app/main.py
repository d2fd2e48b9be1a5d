"""
FastAPI Credential Proxy Application Factory
============================================

This is the main entry point for the proxy service that sits between
browser clients and third-party media APIs.

Architecture:
    Browser → Proxy (this service, holds API keys) → Runway / Marble / Decart / KIRI

Routers:
    - /runway/*, /marble/*, /decart/*, /kiri/* : Provider proxies (credentials injected)
    - /fetch?url=...                           : Generic CORS proxy (no credentials)
    - /health                                  : Health check endpoint

Environment Variables:
    - RUNWAY_KEY, MARBLE_KEY, DECART_KEY, KIRI_API_KEY: Provider API keys
    - PROXY_HOST / PROXY_PORT: Bind address (default: 0.0.0.0:8787)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn keyproxy.app.main:app --reload --host 0.0.0.0 --port 8787

    Production:
        uvicorn keyproxy.app.main:app --host 0.0.0.0 --port 8787 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from keyproxy.app.config import get_settings, validate_configuration
from keyproxy.app.models import ErrorResponse
from keyproxy.app.proxy import proxy_router
from keyproxy.app.proxy.errors import ProxyError, UpstreamTransportError
from keyproxy.app.proxy.headers import cors_headers


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Application state singletons
class AppState:
    """
    Global application state container.

    Holds the shared upstream HTTP client; nothing request-specific.
    """
    def __init__(self):
        self.upstream_client: httpx.AsyncClient = None


# Global state instance
app_state = AppState()


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Load configuration from environment
        - Warn about unset provider keys
        - Create the shared upstream HTTP client

    Shutdown tasks:
        - Close the upstream HTTP client
    """
    # Startup
    settings = get_settings()

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("keyproxy.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(warning)

    # Redirects are relayed to the browser, not followed here
    app_state.upstream_client = httpx.AsyncClient(follow_redirects=False)
    logger.info(
        "Credential proxy started",
        extra={"configured_providers": ",".join(report["configured"])}
    )

    yield

    # Shutdown
    logger.info("Shutting down credential proxy")
    await app_state.upstream_client.aclose()
    app_state.upstream_client = None
    logger.info("Credential proxy shutdown complete")


# Create FastAPI application
def create_app() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Proxy router (catch-all)
        - Exception handlers that keep CORS headers on local errors

    Interactive docs are disabled: every path belongs to the proxy.

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="Credential Proxy",
        description="Edge proxy that injects server-held API keys for browser clients",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.include_router(proxy_router)

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        """
        Render locally handled proxy errors.

        Transport failures are JSON; client input and not-found errors are
        plain text. All carry CORS headers so the browser can read them.
        """
        headers = cors_headers(request.headers.get("origin"))
        if isinstance(exc, UpstreamTransportError):
            return JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(error=exc.message).model_dump(),
                headers=headers,
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code, headers=headers)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a JSON error with CORS headers.
        """
        logger = logging.getLogger("keyproxy.main")
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="An unexpected error occurred").model_dump(),
            headers=cors_headers(request.headers.get("origin")),
        )

    # Make state accessible to routers via app.state
    app.state.app_state = app_state

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m keyproxy.app.main
    """
    settings = get_settings()

    uvicorn.run(
        "keyproxy.app.main:app",
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
