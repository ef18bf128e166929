"""Standardized response and request models for the gateway API."""

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIMetadata(BaseModel):
    """Metadata included in all API responses."""

    request_id: str = Field(
        default_factory=lambda: str(uuid4()), description="Unique request identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Response timestamp (UTC)",
    )
    version: str = Field(default="v1", description="API version")


class StandardResponse(BaseModel, Generic[T]):
    """Standard response format for all API endpoints."""

    success: bool = Field(description="Whether the request was successful")
    data: T | None = Field(default=None, description="Response data")
    message: str | None = Field(default=None, description="Human-readable message")
    metadata: APIMetadata = Field(
        default_factory=APIMetadata, description="Response metadata"
    )


class HealthStatus(BaseModel):
    """Health check response model."""

    status: str = Field(
        description="Overall health status", examples=["healthy", "unhealthy"]
    )
    checks: dict[str, Any] = Field(
        default_factory=dict, description="Individual health check results"
    )
    version: str = Field(description="Application version")
    uptime: float | None = Field(
        default=None, description="Application uptime in seconds"
    )


class WorkspaceRequest(BaseModel):
    """Target workspace of a connection test."""

    workspace_id: str = Field(min_length=1)


class DatasetRequest(BaseModel):
    """Target dataset of a metadata operation."""

    workspace_id: str = Field(min_length=1)
    dataset_id: str = Field(min_length=1)
    dataset_name: str | None = None


class ValidateQueryRequest(BaseModel):
    query: str


class ExecuteQueryRequest(BaseModel):
    """Request to execute a DAX query."""

    workspace_id: str = Field(min_length=1)
    dataset_id: str = Field(min_length=1)
    query: str = Field(min_length=1)


class BatchQueryRequest(BaseModel):
    """Request to execute independent DAX queries concurrently."""

    workspace_id: str = Field(min_length=1)
    dataset_id: str = Field(min_length=1)
    queries: list[str] = Field(min_length=1, max_length=50)


class ClearPoolResponse(BaseModel):
    cleared_connections: int
