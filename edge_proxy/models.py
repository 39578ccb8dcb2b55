"""
Data Models Module

This module defines the Pydantic models and enumerations shared by the
configuration layer and the proxy handler.

Models are organized by functional area:
- Configuration values (upstream choice, policies, the frozen ProxyConfig)
- Failure classification (FailureKind)
- Response payloads (error envelope, health check)
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Configuration Enumerations
# ============================================================================

class UpstreamBase(str, Enum):
    """Upstream API hosts a deployment may target. Exactly one is active."""

    PRIMARY = "https://api.jup.ag"
    LITE = "https://lite-api.jup.ag"

    @classmethod
    def resolve(cls, value: str) -> "UpstreamBase":
        """
        Resolve an option name ("primary", "lite") or a full base URL.

        Raises:
            ValueError: If the value matches no known upstream
        """
        candidate = value.strip()
        by_name = candidate.upper()
        if by_name in cls.__members__:
            return cls[by_name]

        candidate = candidate.rstrip("/")
        for member in cls:
            if member.value == candidate:
                return member

        options = ", ".join(
            f"{m.name.lower()} ({m.value})" for m in cls
        )
        raise ValueError(f"Unknown upstream base URL '{value}'. Expected one of: {options}")


class UnmatchedPrefixPolicy(str, Enum):
    """What to do with a path that does not start with the proxy prefix."""

    PASSTHROUGH = "passthrough"
    REJECT = "reject"


class ResponseMode(str, Enum):
    """How upstream response bodies are relayed."""

    STREAM = "stream"
    BUFFER = "buffer"


class FailureKind(str, Enum):
    """Transport failure tag assigned where the network error is observed."""

    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    OTHER = "other"


# ============================================================================
# Proxy Configuration
# ============================================================================

class ProxyConfig(BaseModel):
    """
    Immutable per-process proxy configuration.

    Built once at startup from Settings and shared by every request.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=UpstreamBase.PRIMARY.value, description="Upstream base URL without trailing slash")
    path_prefix: str = Field(default="/jupiter", description="Leading path prefix stripped before forwarding")
    credential: Optional[str] = Field(default=None, description="Bearer credential injected upstream", repr=False)
    require_credential: bool = Field(default=False, description="Fail closed when no credential is configured")
    timeout_seconds: Optional[float] = Field(default=30.0, description="Whole-call upstream timeout", gt=0)
    response_mode: ResponseMode = Field(default=ResponseMode.STREAM)
    max_response_bytes: int = Field(default=10 * 1024 * 1024, description="Buffer mode body limit", gt=0)
    unmatched_prefix_policy: UnmatchedPrefixPolicy = Field(default=UnmatchedPrefixPolicy.PASSTHROUGH)
    no_store: bool = Field(default=False, description="Force Cache-Control: no-store on relayed responses")
    allow_methods: str = Field(default="GET, POST, PUT, DELETE, OPTIONS")
    allow_headers: str = Field(default="*")
    max_age: Optional[int] = Field(default=None, ge=0)

    @property
    def has_credential(self) -> bool:
        return bool(self.credential)


# ============================================================================
# Response Models
# ============================================================================

class ErrorEnvelope(BaseModel):
    """JSON body returned for every proxy-generated failure."""

    success: bool = Field(default=False, description="Always false for errors")
    error: str = Field(..., description="Human-readable error message")
    message: Optional[str] = Field(None, description="Raw underlying error text, diagnostic only")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    upstream: str = Field(..., description="Active upstream base URL")
