"""
Edge Proxy
==========

Tiny reverse proxy that forwards requests under a path prefix (``/jupiter``
by default) to the Jupiter API, injects the upstream bearer credential and
relaxes CORS for browser clients.

Modules:
- config: Environment settings and the immutable ProxyConfig
- models: Shared Pydantic models and enumerations
- proxy: Request rewriting, forwarding and error envelopes
- main: FastAPI application factory and uvicorn entry point
"""

__version__ = "1.0.0"
