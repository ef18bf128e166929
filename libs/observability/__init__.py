"""Logging and request correlation for the gateway service."""

from .config import LoggingConfig
from .logging import (
    configure_structured_logging,
    get_correlation_id,
    set_correlation_id,
)
from .middleware import CorrelationMiddleware

__all__ = [
    "LoggingConfig",
    "configure_structured_logging",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationMiddleware",
]
