"""Tables backing snapshot persistence and linked credentials."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class TimestampedModel(Base):  # type: ignore[misc]
    """Base model with common fields."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class DatasetSchemaRecord(TimestampedModel):
    """Last extracted schema snapshot of a dataset."""

    __tablename__ = "dataset_schemas"

    dataset_key: Mapped[str] = mapped_column(
        String(512), unique=True, index=True, nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    workspace_id: Mapped[str] = mapped_column(String(255), nullable=False)
    dataset_id: Mapped[str] = mapped_column(String(255), nullable=False)
    dataset_name: Mapped[str] = mapped_column(String(255), nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_schema_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class OAuthTokenRecord(TimestampedModel):
    """Access token linked by a principal for an external service."""

    __tablename__ = "oauth_tokens"
    __table_args__ = (UniqueConstraint("principal_id", "service_name"),)

    principal_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    service_name: Mapped[str] = mapped_column(String(50), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
