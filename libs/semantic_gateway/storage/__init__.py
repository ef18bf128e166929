"""Persistence for schema snapshots and linked credentials."""

from .database import Base, DatabaseManager
from .repository import (
    InMemorySnapshotStore,
    SQLAlchemySnapshotStore,
    SQLAlchemyTokenProvider,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "InMemorySnapshotStore",
    "SQLAlchemySnapshotStore",
    "SQLAlchemyTokenProvider",
]
