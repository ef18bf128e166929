"""
Shared data structures for sessions, tabular results and query outcomes.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind

# A result row exposes cells by name, by position, or both.
Row = dict[str, Any] | list[Any]


class PoolKey(BaseModel):
    """Identity of a reusable session slot."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    principal_id: str = Field(min_length=1)

    @property
    def key(self) -> str:
        """Canonical string form, the only key derivation used by the pool."""
        return f"{self.tenant_id}:{self.workspace_id}:{self.principal_id}"

    def __str__(self) -> str:
        return self.key


class TokenGrant(BaseModel):
    """Bearer credential handed out by a token provider."""

    access_token: str
    expires_at: datetime


class EndpointDescriptor(BaseModel):
    """Where and how a session talks to the remote service."""

    model_config = ConfigDict(frozen=True)

    server: str
    database: str
    rest_base_url: str
    authentication: str = "Bearer Token"


class SessionDescriptor:
    """
    A pooled session handle.

    Instances are owned by the session pool and mutated in place, under the
    pool lock, on reuse and on invalidation.
    """

    def __init__(
        self,
        identity: PoolKey,
        access_token: str,
        token_expiry: datetime,
        endpoint: EndpointDescriptor,
        created_at: datetime,
    ):
        self.identity = identity
        self.access_token = access_token
        self.token_expiry = token_expiry
        self.endpoint = endpoint
        self.created_at = created_at
        self.last_used = created_at
        self.usage_count = 0
        self.is_valid = True

    @property
    def key(self) -> str:
        return self.identity.key

    def touch(self, now: datetime) -> None:
        """Record a reuse."""
        self.last_used = now
        self.usage_count += 1

    def mark_invalid(self) -> None:
        self.is_valid = False

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def token_seconds_remaining(self, now: datetime) -> float:
        return (self.token_expiry - now).total_seconds()

    def __repr__(self) -> str:
        return (
            f"SessionDescriptor(key={self.key!r}, usage_count={self.usage_count}, "
            f"is_valid={self.is_valid})"
        )


class SessionSummary(BaseModel):
    """Per-entry view exposed through pool statistics."""

    key: str
    created_at: datetime
    last_used: datetime
    age_seconds: float
    usage_count: int
    is_valid: bool
    token_expires_in_seconds: int


class PoolStats(BaseModel):
    """Snapshot of pool counters and entries."""

    total_connections: int = 0
    reuse_count: int = 0
    expiry_count: int = 0
    eviction_count: int = 0
    error_count: int = 0
    current_pool_size: int = 0
    max_pool_size: int = 0
    connections: list[SessionSummary] = Field(default_factory=list)


class ResultTable(BaseModel):
    """One table of a tabular response."""

    rows: list[Row] = Field(default_factory=list)


class TabularResult(BaseModel):
    """Raw tabular response of the remote service."""

    tables: list[ResultTable] = Field(default_factory=list)

    @property
    def rows(self) -> list[Row] | None:
        """Rows of the first table, or ``None`` when the response has none."""
        if not self.tables:
            return None
        return self.tables[0].rows

    @property
    def row_count(self) -> int:
        rows = self.rows
        return len(rows) if rows else 0


class QueryOutcome(BaseModel):
    """Result of one resilient query call, owned by the caller."""

    success: bool
    query: str
    result: TabularResult | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    execution_time_ms: int
    row_count: int = 0
    attempts: int = 0
    session_invalidated: bool = False
    dataset_id: str | None = None
    workspace_id: str | None = None


class BatchOutcome(BaseModel):
    """Aggregated outcome of a concurrent batch."""

    success: bool
    total_queries: int
    successful_queries: int = 0
    failed_queries: int = 0
    results: list[QueryOutcome] = Field(default_factory=list)
    total_execution_time_ms: int = 0
    error: str | None = None


class ValidationResult(BaseModel):
    """Static pre-flight check result."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ExecutorStats(BaseModel):
    """Executor counters with derived figures."""

    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    retried_queries: int = 0
    total_execution_time_ms: int = 0
    average_execution_time_ms: int = 0
    success_rate: str = "0%"
