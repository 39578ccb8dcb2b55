"""
FastAPI Edge Proxy Application Factory
======================================

This is the main entry point for the edge proxy that sits between browser
clients and the upstream Jupiter API.

Architecture:
    Browser → Edge Proxy (this service) → https://api.jup.ag (or lite-api)

Routes:
    - /health       : Health check endpoint
    - /{path}       : Everything else is proxied (prefix /jupiter stripped)

Running the Service:
    Development:
        uvicorn edge_proxy.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn edge_proxy.main:app --host 0.0.0.0 --port 8080 --workers 4

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn edge_proxy.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import httpx
import uvicorn

from . import __version__
from .config import Settings, get_settings, validate_configuration
from .models import ErrorEnvelope, HealthResponse
from .proxy import ProxyHandler, build_proxy_handler, proxy_router
from .proxy.rewrite import cors_error_headers


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


# Application state
class AppState:
    """
    Application state container.

    Holds the shared resources created at startup: the settings, the pooled
    upstream HTTP client and the proxy handler built on top of it.
    """
    def __init__(self):
        self.settings: Optional[Settings] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.proxy_handler: Optional[ProxyHandler] = None


def _make_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup tasks:
            - Freeze settings into the immutable ProxyConfig
            - Create the process-wide httpx client and the ProxyHandler
            - Log configuration problems before the first request

        Shutdown tasks:
            - Close the upstream connection pool
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("edge_proxy.main")
        app_state: AppState = app.state.app_state

        status = validate_configuration(settings)
        for error in status["errors"]:
            logger.error(f"Configuration error: {error}")
        for warning in status["warnings"]:
            logger.warning(f"Configuration warning: {warning}")

        created_here = app_state.proxy_handler is None
        if created_here:
            app_state.proxy_handler = build_proxy_handler(settings.to_proxy_config())
            app_state.http_client = app_state.proxy_handler.client

        logger.info(
            "Edge proxy started",
            extra={
                "upstream": settings.base_url,
                "path_prefix": settings.UPSTREAM_PATH_PREFIX,
                "version": __version__,
            }
        )

        yield

        logger.info("Shutting down edge proxy")
        if created_here and app_state.http_client is not None:
            await app_state.http_client.aclose()
            app_state.proxy_handler = None
            app_state.http_client = None
        logger.info("Edge proxy shutdown complete")

    return lifespan


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Health endpoint
        - Catch-all proxy route
        - Exception handlers that keep the CORS header on every error

    Args:
        settings: Settings to use instead of the cached environment settings

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Edge Proxy",
        description="CORS-relaxing authenticated reverse proxy for the Jupiter API",
        version=__version__,
        lifespan=_make_lifespan(settings),
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app_state = AppState()
    app_state.settings = settings
    app.state.app_state = app_state

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            HealthResponse: Service status and active upstream
        """
        return HealthResponse(
            status="ok",
            service="edge-proxy",
            version=__version__,
            upstream=settings.base_url,
        )

    # Proxy router: everything that is not /health
    app.include_router(proxy_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Render framework HTTP errors as error envelopes with CORS headers."""
        envelope = ErrorEnvelope(error=str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope.model_dump(exclude_none=True),
            headers=cors_error_headers(),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error envelope.

        Args:
            request: FastAPI request object
            exc: Exception that was raised

        Returns:
            JSONResponse: Standardized error response
        """
        logger = logging.getLogger("edge_proxy.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        envelope = ErrorEnvelope(
            error="Internal server error",
            message=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(
            status_code=500,
            content=envelope.model_dump(exclude_none=True),
            headers=cors_error_headers(),
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m edge_proxy.main
    However, using uvicorn command is recommended for production.
    """
    settings = get_settings()

    uvicorn.run(
        "edge_proxy.main:app",
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
