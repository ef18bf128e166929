"""Configuration for logging."""

from pydantic import BaseModel


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = "INFO"
    format: str = "json"  # json or console
    enable_correlation: bool = True
    enable_tracing_integration: bool = True
