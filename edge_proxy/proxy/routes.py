"""
Proxy Routes - Catch-all Upstream Forwarding
=============================================

This module exposes the proxy handler as a FastAPI route that accepts every
method on every path. Path prefix handling, CORS and error envelopes are the
handler's job; the route only resolves the shared handler and delegates.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from .handler import ProxyHandler

# Create router
proxy_router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


# ============================================================================
# Dependencies
# ============================================================================

def get_proxy_handler(request: Request) -> ProxyHandler:
    """
    Dependency to get the proxy handler from app state.

    Args:
        request: FastAPI request object

    Returns:
        ProxyHandler created during application startup

    Raises:
        HTTPException: If the application has not finished starting
    """
    app_state = getattr(request.app.state, "app_state", None)
    handler = getattr(app_state, "proxy_handler", None) if app_state else None

    if handler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Proxy handler not initialized",
        )

    return handler


# ============================================================================
# Proxy Endpoint
# ============================================================================

@proxy_router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_all(
    request: Request,
    path: str,
    handler: ProxyHandler = Depends(get_proxy_handler),
) -> Response:
    """Catch-all route that proxies every request to the upstream API."""
    return await handler.handle(request)
