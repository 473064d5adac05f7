"""
Shared configuration management for the Governance Policy Engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLICY_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Root log level")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/governance")

    # Backend selection
    cache_backend: str = Field(default="memory", description="memory or redis")
    policy_store: str = Field(default="memory", description="memory or postgres")
    cache_namespace: str = Field(default="policy_engine:")

    # Cache lifetimes
    result_cache_ttl_seconds: int = Field(default=300, ge=1)
    policy_cache_ttl_seconds: int = Field(default=300, ge=1)

    # Timeouts for collaborator calls
    store_timeout_seconds: float = Field(default=2.0, gt=0)
    cache_timeout_seconds: float = Field(default=0.5, gt=0)

    # Evaluation
    default_time_zone: str = Field(default="UTC")

    # Observability
    enable_metrics: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name)
