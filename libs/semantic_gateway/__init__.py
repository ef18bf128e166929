"""
Resilient client layer for token-authenticated semantic model services.

Three cooperating components:

- ``SessionPool`` reuses per-identity sessions with expiry and LRU eviction.
- ``QueryExecutor`` runs queries with bounded retries and backoff.
- ``MetadataAggregator`` discovers a dataset's schema with per-category
  fallback and builds a glossary and text summary from it.
"""

from .config import GatewaySettings, RetryPolicy, SessionPoolConfig
from .dependencies import SemanticGateway, gateway_lifespan, get_semantic_gateway
from .errors import (
    ErrorKind,
    GatewayError,
    GatewayQueryError,
    MalformedResultError,
    QueryTimeoutError,
    RemoteQueryError,
    SessionCreationError,
)
from .executor import QueryExecutor
from .metadata import MetadataAggregator, SchemaSnapshot
from .models import (
    BatchOutcome,
    PoolKey,
    QueryOutcome,
    SessionDescriptor,
    TabularResult,
    TokenGrant,
    ValidationResult,
)
from .pool import SessionPool
from .powerbi import PowerBIQueryService
from .providers import (
    RemoteQueryService,
    SnapshotStore,
    StaticTokenProvider,
    TokenProvider,
)

__all__ = [
    "GatewaySettings",
    "RetryPolicy",
    "SessionPoolConfig",
    "SemanticGateway",
    "gateway_lifespan",
    "get_semantic_gateway",
    "ErrorKind",
    "GatewayError",
    "GatewayQueryError",
    "MalformedResultError",
    "QueryTimeoutError",
    "RemoteQueryError",
    "SessionCreationError",
    "QueryExecutor",
    "MetadataAggregator",
    "SchemaSnapshot",
    "BatchOutcome",
    "PoolKey",
    "QueryOutcome",
    "SessionDescriptor",
    "TabularResult",
    "TokenGrant",
    "ValidationResult",
    "SessionPool",
    "PowerBIQueryService",
    "RemoteQueryService",
    "SnapshotStore",
    "StaticTokenProvider",
    "TokenProvider",
]
