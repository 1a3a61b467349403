"""
Shared configuration management for the Render Cache service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RENDER_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Response cache
    cache_dir: str = Field(default="./cache")
    cache_ttl_seconds: int = Field(default=300, gt=0)
    cache_bypass_param: str = Field(default="refreshCache")
    cache_marker_header: str = Field(default="x-render-cached")

    # Downstream renderer
    renderer_url: str = Field(default="http://localhost:3000")
    renderer_timeout: float = Field(default=30.0, gt=0)

    # Optional allow-list of origins for CORS outside local development
    cors_origins: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
