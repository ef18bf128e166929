"""Configuration for the semantic model gateway."""

import random

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionPoolConfig(BaseModel):
    """Bounds applied to pooled sessions."""

    model_config = ConfigDict(frozen=True)

    max_pool_size: int = Field(default=10, ge=1)
    max_connection_age_seconds: float = Field(default=1800, gt=0)  # 30 minutes
    token_expiry_buffer_seconds: float = Field(default=300, ge=0)  # 5 minutes
    cleanup_interval_seconds: float = Field(default=300, gt=0)


class RetryPolicy(BaseModel):
    """Immutable retry configuration read by the query executor on every call."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=10.0, ge=0)
    jitter_fraction: float = Field(default=0.2, ge=0, le=1)
    timeout_seconds: float = Field(default=30.0, gt=0)

    def compute_backoff(self, attempt: int, rng: random.Random | None = None) -> float:
        """Exponential delay for ``attempt`` (1-based), capped, plus upward jitter."""
        delay = min(
            self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds
        )
        uniform = rng.uniform if rng else random.uniform
        return delay + uniform(0, self.jitter_fraction * delay)


class GatewaySettings(BaseSettings):
    """Environment driven settings (``XMLA_*`` variables)."""

    model_config = SettingsConfigDict(
        env_prefix="XMLA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Session pool
    connection_pool_size: int = Field(default=10, ge=1)
    max_connection_age_seconds: float = Field(default=1800, gt=0)
    token_expiry_buffer_seconds: float = Field(default=300, ge=0)
    cleanup_interval_seconds: float = Field(default=300, gt=0)

    # Query execution
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=10.0, ge=0)
    query_timeout_ms: int = Field(default=30000, gt=0)

    # Remote service
    api_base_url: str = Field(default="https://api.powerbi.com/v1.0/myorg")
    xmla_base_url: str = Field(default="powerbi://api.powerbi.com/v1.0/myorg")
    token_service_name: str = Field(default="powerbi")
    http_timeout_seconds: float = Field(default=60.0, gt=0)

    # Persistence
    database_url: str = Field(default="sqlite+aiosqlite:///./semantic_gateway.db")
    echo_sql: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    def pool_config(self) -> SessionPoolConfig:
        return SessionPoolConfig(
            max_pool_size=self.connection_pool_size,
            max_connection_age_seconds=self.max_connection_age_seconds,
            token_expiry_buffer_seconds=self.token_expiry_buffer_seconds,
            cleanup_interval_seconds=self.cleanup_interval_seconds,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            timeout_seconds=self.query_timeout_ms / 1000,
        )


def get_gateway_settings() -> GatewaySettings:
    """Get gateway settings instance."""
    return GatewaySettings()
