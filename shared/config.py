"""
Shared configuration management for the Airflow Access Gateway.
"""

import secrets
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    api_prefix: str = Field(default="/api/v1")
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    # Orchestrator (Airflow stable REST API)
    orchestrator_base_url: str = Field(default="http://localhost:8080")
    orchestrator_api_path: str = Field(default="/api/v1")
    orchestrator_timeout_seconds: float = Field(default=30.0, gt=0)
    orchestrator_username: Optional[str] = Field(default=None)
    orchestrator_password: Optional[SecretStr] = Field(default=None)

    # Tokens
    token_secret: SecretStr = Field(default_factory=lambda: SecretStr(secrets.token_urlsafe(48)))
    token_ttl_seconds: int = Field(default=86400, gt=0)

    # Persistence
    postgres_dsn: Optional[str] = Field(default=None)
    audit_timeout_seconds: float = Field(default=5.0, gt=0)

    # Bootstrap accounts
    bootstrap_admin_username: Optional[str] = Field(default=None)
    bootstrap_admin_password: Optional[SecretStr] = Field(default=None)
    seed_demo_users: bool = Field(default=False)

    @field_validator("token_secret")
    @classmethod
    def _check_secret_length(cls, value: SecretStr) -> SecretStr:
        if len(value.get_secret_value()) < 32:
            raise ValueError("token_secret must be at least 32 characters")
        return value

    @field_validator("api_prefix", "orchestrator_api_path")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = "/" + value.strip("/")
        return "" if value == "/" else value

    @property
    def orchestrator_api_url(self) -> str:
        """Full base URL of the orchestrator REST API."""
        return self.orchestrator_base_url.rstrip("/") + self.orchestrator_api_path


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
