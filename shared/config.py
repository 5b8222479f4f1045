"""
Shared configuration management for the Incidents service.
"""

from typing import List, Optional
from urllib.parse import quote

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_JWT_SECRET = "your-secret-key"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="INCIDENTS_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # PostgreSQL (Record Store + Credential Store)
    # A full DSN wins; otherwise the DSN is assembled from the parts below.
    postgres_dsn: Optional[str] = None
    # Hosted-database URL; implies TLS unless postgres_ssl says otherwise.
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("INCIDENTS_DATABASE_URL", "DATABASE_URL"),
    )
    postgres_user: str = Field(default="dani", validation_alias=AliasChoices("INCIDENTS_POSTGRES_USER", "POSTGRES_USER"))
    postgres_password: str = Field(
        default="dani1234",
        validation_alias=AliasChoices("INCIDENTS_POSTGRES_PASSWORD", "POSTGRES_PASSWORD"),
    )
    postgres_host: str = Field(default="localhost", validation_alias=AliasChoices("INCIDENTS_POSTGRES_HOST", "POSTGRES_HOST"))
    postgres_port: int = Field(default=5432, validation_alias=AliasChoices("INCIDENTS_POSTGRES_PORT", "POSTGRES_PORT"))
    postgres_db: str = Field(default="incidentDb", validation_alias=AliasChoices("INCIDENTS_POSTGRES_DB", "POSTGRES_DB"))
    postgres_ssl: Optional[bool] = None
    postgres_pool_min_size: int = Field(default=2, ge=1)
    postgres_pool_max_size: int = Field(default=10, ge=1)
    postgres_command_timeout: float = 5.0
    postgres_acquire_timeout: float = 5.0

    # Redis (Cache Layer)
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("INCIDENTS_REDIS_URL", "APP_REDIS_CONNECTION_STRING"),
    )
    redis_host: str = Field(default="localhost", validation_alias=AliasChoices("INCIDENTS_REDIS_HOST", "REDIS_HOST"))
    redis_port: int = Field(default=6379, validation_alias=AliasChoices("INCIDENTS_REDIS_PORT", "REDIS_PORT"))
    redis_socket_timeout: float = 2.0
    cache_ttl_seconds: int = Field(default=60, ge=1)

    # Security
    jwt_secret: str = Field(
        default=DEFAULT_JWT_SECRET,
        validation_alias=AliasChoices("INCIDENTS_JWT_SECRET", "SESSION_SECRET"),
    )
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = Field(default=3600, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=10, le=31)

    # HTTP surface
    api_prefix: str = "/api"
    cors_origins: List[str] = ["http://localhost:8080"]

    @model_validator(mode="after")
    def _resolve_connections(self):
        """Fill in connection URLs from whichever settings were given."""
        if self.postgres_dsn is None and self.database_url:
            self.postgres_dsn = self.database_url
            if self.postgres_ssl is None:
                self.postgres_ssl = True
        if self.postgres_dsn is None:
            self.postgres_dsn = (
                f"postgresql://{quote(self.postgres_user, safe='')}:{quote(self.postgres_password, safe='')}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        if self.postgres_ssl is None:
            self.postgres_ssl = False

        if self.redis_url is None:
            self.redis_url = f"redis://{self.redis_host}:{self.redis_port}/0"
        return self


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
