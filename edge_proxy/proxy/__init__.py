"""
Proxy Package
=============

This package implements the prefix-stripping reverse proxy that forwards
browser requests to the upstream API.

Main Components:
----------------
- handler.py: ProxyHandler (preflight, rewrite, forward, relay, error envelopes)
- rewrite.py: Pure URL and header rewriting helpers
- errors.py: Error taxonomy and transport failure classification
- routes.py: FastAPI catch-all router

Usage:
------
    from edge_proxy.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .handler import ProxyHandler, build_proxy_handler
from .routes import proxy_router

__all__ = ["ProxyHandler", "build_proxy_handler", "proxy_router"]
