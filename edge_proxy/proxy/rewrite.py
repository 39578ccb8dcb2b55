"""
Request and response rewriting helpers.

Pure functions used by the proxy handler to turn an inbound path and header
set into the upstream target, and an upstream header list into the headers
returned to the browser. Each function builds a fresh collection; nothing is
mutated in place.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from ..models import ProxyConfig

# Hop-by-hop headers that should NOT be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Inbound headers never forwarded upstream, on top of the hop-by-hop set
DROPPED_REQUEST_HEADERS = {"host"}

DEFAULT_CONTENT_TYPE = "application/json"


def strip_prefix(path: str, prefix: str) -> Optional[str]:
    """
    Remove one leading occurrence of the proxy prefix from a path.

    Matching is a plain string prefix, so "/jupiterv6/quote" becomes
    "/v6/quote". A remainder without a leading slash gets one.

    Args:
        path: Inbound request path
        prefix: Configured prefix, e.g. "/jupiter"

    Returns:
        The remaining path (at least "/"), or None if the prefix did not match
    """
    if not path.startswith(prefix):
        return None

    remainder = path[len(prefix):]
    if not remainder.startswith("/"):
        remainder = f"/{remainder}"

    return remainder


def build_target_url(base_url: str, api_path: str, query: str = "") -> str:
    """
    Join the upstream base, the rewritten path and the original query string.

    Examples:
        >>> build_target_url("https://api.jup.ag", "/v6/quote", "inputMint=A")
        'https://api.jup.ag/v6/quote?inputMint=A'
    """
    target = f"{base_url.rstrip('/')}{api_path}"
    if query:
        target = f"{target}?{query}"
    return target


def build_upstream_headers(
    config: ProxyConfig,
    inbound: Iterable[Tuple[str, str]],
) -> Dict[str, str]:
    """
    Build headers for the upstream request.

    Copies inbound headers (last write wins on duplicate names), drops Host
    and hop-by-hop headers, and when a credential is configured replaces any
    client Authorization header with the proxy's bearer credential.

    Args:
        config: Proxy configuration
        inbound: Inbound header (name, value) pairs

    Returns:
        Headers dict for the upstream request
    """
    headers: Dict[str, str] = {}
    names: Dict[str, str] = {}

    for name, value in inbound:
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in DROPPED_REQUEST_HEADERS:
            continue
        # Keep a single spelling per header name
        if lowered in names:
            del headers[names[lowered]]
        names[lowered] = name
        headers[name] = value

    if config.has_credential:
        if "authorization" in names:
            del headers[names["authorization"]]
        headers["Authorization"] = f"Bearer {config.credential}"

    return headers


def build_response_headers(
    config: ProxyConfig,
    upstream: Iterable[Tuple[str, str]],
) -> List[Tuple[str, str]]:
    """
    Build headers for the response relayed back to the client.

    Upstream headers are copied minus hop-by-hop headers, then the CORS
    origin (and, when configured, Cache-Control: no-store) are forced and a
    missing Content-Type defaults to application/json. Repeated headers
    such as Set-Cookie stay separate entries.

    Args:
        config: Proxy configuration
        upstream: Upstream response header (name, value) pairs

    Returns:
        Lower-cased (name, value) pairs for the outgoing response
    """
    forced = {"access-control-allow-origin": "*"}
    if config.no_store:
        forced["cache-control"] = "no-store"

    headers: List[Tuple[str, str]] = []
    for name, value in upstream:
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in forced:
            continue
        headers.append((lowered, value))

    headers.extend(forced.items())
    if not any(name == "content-type" and value for name, value in headers):
        headers = [(name, value) for name, value in headers if name != "content-type"]
        headers.append(("content-type", DEFAULT_CONTENT_TYPE))

    return headers


def preflight_headers(config: ProxyConfig) -> Dict[str, str]:
    """Headers answering a CORS preflight request."""
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": config.allow_methods,
        "Access-Control-Allow-Headers": config.allow_headers,
    }
    if config.max_age is not None:
        headers["Access-Control-Max-Age"] = str(config.max_age)
    return headers


def cors_error_headers() -> Dict[str, str]:
    """Headers attached to every proxy-generated error response."""
    return {
        "Access-Control-Allow-Origin": "*",
        "Cache-Control": "no-store",
    }
