"""
Configuration module for the Edge Proxy.

This module uses Pydantic Settings to load and validate environment variables
for the upstream target, the bearer credential, timeouts, body handling and
CORS preflight answers.

Environment variables are loaded from .env file or system environment.
Settings are read once at startup and turned into an immutable ProxyConfig.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ProxyConfig, ResponseMode, UnmatchedPrefixPolicy, UpstreamBase


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for upstream forwarding, authentication and the
    server process is defined here.
    """

    # =========================================================================
    # Upstream Configuration
    # =========================================================================

    UPSTREAM_BASE_URL: UpstreamBase = Field(
        default=UpstreamBase.PRIMARY,
        description="Upstream API: 'primary' (https://api.jup.ag) or 'lite' (https://lite-api.jup.ag)",
    )

    UPSTREAM_PATH_PREFIX: str = Field(
        default="/jupiter",
        description="Path prefix stripped from inbound requests before forwarding",
        min_length=1,
    )

    UNMATCHED_PREFIX_POLICY: UnmatchedPrefixPolicy = Field(
        default=UnmatchedPrefixPolicy.PASSTHROUGH,
        description="Forward ('passthrough') or 404 ('reject') paths outside the prefix",
    )

    # =========================================================================
    # Authentication
    # =========================================================================

    UPSTREAM_CREDENTIAL: Optional[str] = Field(
        None,
        description="Bearer credential sent upstream as 'Authorization: Bearer <credential>'",
    )

    REQUIRE_CREDENTIAL: bool = Field(
        default=False,
        description="Refuse to forward (500) when UPSTREAM_CREDENTIAL is missing",
    )

    # =========================================================================
    # Forwarding Behaviour
    # =========================================================================

    REQUEST_TIMEOUT_MS: int = Field(
        default=30000,
        description="Upstream call timeout in milliseconds (0 disables it)",
        ge=0,
    )

    RESPONSE_MODE: ResponseMode = Field(
        default=ResponseMode.STREAM,
        description="'stream' relays chunks as they arrive, 'buffer' reads the whole body first",
    )

    MAX_RESPONSE_BYTES: int = Field(
        default=10 * 1024 * 1024,
        description="Largest upstream body accepted in buffer mode",
        ge=1024,
    )

    FORCE_NO_STORE: Optional[bool] = Field(
        None,
        description="Force Cache-Control: no-store (defaults to on when a credential is set)",
    )

    # =========================================================================
    # CORS Preflight
    # =========================================================================

    CORS_ALLOW_METHODS: str = Field(
        default="GET, POST, PUT, DELETE, OPTIONS",
        description="Comma-separated methods announced in preflight responses",
    )

    CORS_ALLOW_HEADERS: str = Field(
        default="*",
        description="Comma-separated headers announced in preflight responses, or '*'",
    )

    CORS_MAX_AGE: Optional[int] = Field(
        None,
        description="Preflight cache lifetime in seconds",
        ge=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=8080,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def base_url(self) -> str:
        return self.UPSTREAM_BASE_URL.value

    @property
    def timeout_seconds(self) -> Optional[float]:
        """Timeout as seconds, or None when disabled."""
        if not self.REQUEST_TIMEOUT_MS:
            return None
        return self.REQUEST_TIMEOUT_MS / 1000.0

    @property
    def allow_methods_list(self) -> List[str]:
        return [
            method.strip().upper()
            for method in self.CORS_ALLOW_METHODS.split(",")
            if method.strip()
        ]

    @property
    def no_store(self) -> bool:
        if self.FORCE_NO_STORE is not None:
            return self.FORCE_NO_STORE
        return bool(self.UPSTREAM_CREDENTIAL)

    def to_proxy_config(self) -> ProxyConfig:
        """
        Freeze the settings into the ProxyConfig handed to the handler.

        Returns:
            ProxyConfig built from the current settings
        """
        return ProxyConfig(
            base_url=self.base_url,
            path_prefix=self.UPSTREAM_PATH_PREFIX,
            credential=self.UPSTREAM_CREDENTIAL or None,
            require_credential=self.REQUIRE_CREDENTIAL,
            timeout_seconds=self.timeout_seconds,
            response_mode=self.RESPONSE_MODE,
            max_response_bytes=self.MAX_RESPONSE_BYTES,
            unmatched_prefix_policy=self.UNMATCHED_PREFIX_POLICY,
            no_store=self.no_store,
            allow_methods=", ".join(self.allow_methods_list),
            allow_headers=self.CORS_ALLOW_HEADERS.strip() or "*",
            max_age=self.CORS_MAX_AGE,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("UPSTREAM_BASE_URL", mode="before")
    @classmethod
    def validate_base_url(cls, v):
        """
        Accept the option name or the full URL of a known upstream.

        Raises:
            ValueError: If the value names no known upstream
        """
        if isinstance(v, UpstreamBase):
            return v
        return UpstreamBase.resolve(str(v))

    @field_validator("UPSTREAM_PATH_PREFIX")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        """
        Validate the prefix is an absolute path and drop any trailing slash.

        Raises:
            ValueError: If the prefix does not start with '/' or is only '/'
        """
        v = v.strip()
        if not v.startswith("/"):
            raise ValueError(f"UPSTREAM_PATH_PREFIX must start with '/', got: '{v}'")

        v = v.rstrip("/")
        if not v:
            raise ValueError("UPSTREAM_PATH_PREFIX must not be '/'")

        return v

    @field_validator("UPSTREAM_CREDENTIAL")
    @classmethod
    def validate_credential(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("CORS_ALLOW_METHODS")
    @classmethod
    def validate_allow_methods(cls, v: str) -> str:
        methods = [m.strip() for m in v.split(",") if m.strip()]
        if not methods:
            raise ValueError("CORS_ALLOW_METHODS must contain at least one method")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup so operators see misconfiguration
    before the first request arrives.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if settings.REQUIRE_CREDENTIAL and not settings.UPSTREAM_CREDENTIAL:
        errors.append(
            "REQUIRE_CREDENTIAL is set but UPSTREAM_CREDENTIAL is missing; "
            "all proxied requests will fail with 500"
        )

    if not settings.UPSTREAM_CREDENTIAL and not settings.REQUIRE_CREDENTIAL:
        warnings.append("UPSTREAM_CREDENTIAL is not set; requests are forwarded unauthenticated")

    if settings.timeout_seconds is None:
        warnings.append("REQUEST_TIMEOUT_MS is 0; upstream calls are not bounded by a timeout")

    if settings.UNMATCHED_PREFIX_POLICY == UnmatchedPrefixPolicy.PASSTHROUGH:
        warnings.append(
            f"Paths outside {settings.UPSTREAM_PATH_PREFIX} are forwarded unchanged"
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "upstream": settings.base_url,
        "path_prefix": settings.UPSTREAM_PATH_PREFIX,
        "response_mode": settings.RESPONSE_MODE.value,
    }


if __name__ == "__main__":
    """
    Run this module directly to validate your .env configuration:
        python -m edge_proxy.config
    """
    try:
        config = get_settings()

        print("=" * 80)
        print("EDGE PROXY CONFIGURATION")
        print("=" * 80)
        print(f"  Upstream:       {config.base_url}")
        print(f"  Path prefix:    {config.UPSTREAM_PATH_PREFIX}")
        print(f"  Credential:     {'configured' if config.UPSTREAM_CREDENTIAL else 'not configured'}")
        print(f"  Timeout:        {config.REQUEST_TIMEOUT_MS} ms")
        print(f"  Response mode:  {config.RESPONSE_MODE.value}")

        status = validate_configuration(config)
        for error in status["errors"]:
            print(f"  ERROR:   {error}")
        for warning in status["warnings"]:
            print(f"  WARNING: {warning}")

    except Exception as e:
        print(f"\nConfiguration error: {e}")
