"""
Shared configuration management for the edge proxy.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache store
    cache_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_key_prefix: str = Field(default="edge")


class ProxySettings(BaseConfig):
    """Settings injected into the proxy dispatcher."""

    service_name: str = "proxy"
    host: str = "0.0.0.0"
    port: int = 8000

    # Placeholder fetched for paths that do not encode a target
    fallback_url: str = Field(default="https://404.mise.eu.org/")

    # TTLs in seconds
    default_ttl: int = Field(default=3600, ge=1)
    max_ttl: int = Field(default=604800, ge=1)

    # Upstream
    upstream_timeout: float = Field(default=30.0, gt=0)
    max_redirects: int = Field(default=20, ge=0)

    # Cookie isolation
    cookie_escape_header: str = Field(default="X-Proxy-Cookie")
    set_cookie_alias_header: str = Field(default="X-Proxy-Set-Cookie")

    @model_validator(mode="after")
    def _check_ttl_bounds(self) -> "ProxySettings":
        if self.default_ttl > self.max_ttl:
            raise ValueError("default_ttl must not exceed max_ttl")
        if self.cookie_escape_header.lower() == "cookie":
            raise ValueError("cookie_escape_header must differ from Cookie")
        if self.set_cookie_alias_header.lower() in ("cookie", "set-cookie"):
            raise ValueError("set_cookie_alias_header must not be a cookie header")
        return self


def get_config(**overrides) -> ProxySettings:
    """Get proxy configuration, environment first, then explicit overrides."""
    return ProxySettings(**overrides)
