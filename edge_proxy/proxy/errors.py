"""
Proxy error taxonomy.

Every failure the proxy produces itself is a ProxyError carrying the HTTP
status and the human message placed in the error envelope. Upstream 4xx/5xx
responses are not errors here; they are relayed as-is.
"""

import asyncio
from typing import Optional

import httpx

from ..models import ErrorEnvelope, FailureKind


class ProxyError(Exception):
    """Base class for failures turned into an ErrorEnvelope."""

    status_code = 500
    human_message = "Proxy request failed"

    def __init__(self, detail: Optional[str] = None, human_message: Optional[str] = None):
        super().__init__(detail or human_message or self.human_message)
        self.detail = detail
        if human_message:
            self.human_message = human_message

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(error=self.human_message, message=self.detail)


class ConfigurationError(ProxyError):
    """Required credential missing. Fatal, never retried."""

    status_code = 500
    human_message = "Server configuration error: missing API key"


class PrefixMismatchError(ProxyError):
    """Request path outside the proxy prefix under the reject policy."""

    status_code = 404
    human_message = "Unknown proxy path"


class UpstreamTransportError(ProxyError):
    """Network level failure talking to the upstream API."""

    status_code = 502
    kind = FailureKind.OTHER

    HUMAN_MESSAGES = {
        FailureKind.TIMEOUT: "Upstream request timed out",
        FailureKind.CONNECTION_FAILED: "Unable to connect to upstream API",
        FailureKind.OTHER: "Proxy request failed",
    }

    def __init__(self, kind: FailureKind, detail: Optional[str] = None):
        super().__init__(detail, self.HUMAN_MESSAGES[kind])
        self.kind = kind


class UpstreamTimeoutError(UpstreamTransportError):
    """Upstream call exceeded the configured timeout."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(FailureKind.TIMEOUT, detail)


class ResponseTooLargeError(ProxyError):
    """Buffered upstream body exceeded MAX_RESPONSE_BYTES."""

    status_code = 502
    human_message = "Upstream response too large"


class ClientDisconnectedError(ProxyError):
    """Inbound client went away before the upstream call finished."""

    status_code = 499
    human_message = "Client closed request"


def classify_failure(exc: BaseException) -> FailureKind:
    """
    Tag a failure raised by the forwarding call.

    Args:
        exc: Exception raised by httpx or by the timeout guard

    Returns:
        FailureKind for the exception
    """
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError, httpx.ProxyError)):
        return FailureKind.CONNECTION_FAILED
    return FailureKind.OTHER


def transport_error_from(exc: BaseException) -> UpstreamTransportError:
    """Wrap a raw forwarding exception into the matching UpstreamTransportError."""
    kind = classify_failure(exc)
    detail = str(exc) or type(exc).__name__
    if kind is FailureKind.TIMEOUT:
        return UpstreamTimeoutError(detail)
    return UpstreamTransportError(kind, detail)
