"""Snapshot stores and a database-backed token provider."""

from datetime import UTC, datetime

import structlog
from sqlalchemy import and_, select

from ..metadata.models import SchemaSnapshot
from ..models import TokenGrant
from ..providers import SnapshotStore, TokenProvider
from .database import DatabaseManager
from .models import DatasetSchemaRecord, OAuthTokenRecord

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _versioned(snapshot: SchemaSnapshot, previous_version: int) -> SchemaSnapshot:
    return snapshot.model_copy(
        update={
            "schema_version": previous_version + 1,
            "last_sync": datetime.now(UTC),
            "is_cached": False,
        }
    )


class InMemorySnapshotStore(SnapshotStore):
    """Process-local snapshot store."""

    def __init__(self):
        self._snapshots: dict[str, SchemaSnapshot] = {}

    async def save(self, dataset_key: str, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        previous = self._snapshots.get(dataset_key)
        stored = _versioned(snapshot, previous.schema_version if previous else 0)
        self._snapshots[dataset_key] = stored
        return stored

    async def load(self, dataset_key: str) -> SchemaSnapshot | None:
        return self._snapshots.get(dataset_key)


class SQLAlchemySnapshotStore(SnapshotStore):
    """Snapshots in the ``dataset_schemas`` table, one row per dataset."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = logger.bind(component="snapshot_store")

    async def save(self, dataset_key: str, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        """Upsert the snapshot, incrementing the stored schema version."""
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(DatasetSchemaRecord).where(
                        DatasetSchemaRecord.dataset_key == dataset_key
                    )
                )
                record = result.scalar_one_or_none()

                stored = _versioned(snapshot, record.schema_version if record else 0)
                payload = stored.model_dump(mode="json")

                if record is None:
                    record = DatasetSchemaRecord(dataset_key=dataset_key)
                    session.add(record)

                record.tenant_id = stored.tenant_id
                record.workspace_id = stored.workspace_id
                record.dataset_id = stored.dataset_id
                record.dataset_name = stored.dataset_name
                record.snapshot = payload
                record.schema_version = stored.schema_version
                record.last_schema_sync = stored.last_sync

        except Exception as error:
            self.logger.error(
                "snapshot_save_failed", dataset_key=dataset_key, error=str(error)
            )
            raise

        self.logger.info(
            "snapshot_saved",
            dataset_key=dataset_key,
            schema_version=stored.schema_version,
        )
        return stored

    async def load(self, dataset_key: str) -> SchemaSnapshot | None:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(DatasetSchemaRecord).where(
                        DatasetSchemaRecord.dataset_key == dataset_key
                    )
                )
                record = result.scalar_one_or_none()
        except Exception as error:
            self.logger.error(
                "snapshot_load_failed", dataset_key=dataset_key, error=str(error)
            )
            raise

        if record is None:
            return None

        return SchemaSnapshot.model_validate(record.snapshot).model_copy(
            update={
                "schema_version": record.schema_version,
                "last_sync": _as_utc(record.last_schema_sync),
            }
        )


class SQLAlchemyTokenProvider(TokenProvider):
    """Reads linked credentials from the ``oauth_tokens`` table."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = logger.bind(component="token_provider")

    async def get_valid_token(
        self, principal_id: str, service_name: str
    ) -> TokenGrant | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(OAuthTokenRecord).where(
                    and_(
                        OAuthTokenRecord.principal_id == principal_id,
                        OAuthTokenRecord.service_name == service_name,
                    )
                )
            )
            record = result.scalar_one_or_none()

        if record is None:
            return None

        expires_at = _as_utc(record.expires_at)
        if expires_at <= datetime.now(UTC):
            self.logger.info(
                "token_expired", principal_id=principal_id, service_name=service_name
            )
            return None

        return TokenGrant(access_token=record.access_token, expires_at=expires_at)

    async def store_token(
        self,
        principal_id: str,
        service_name: str,
        access_token: str,
        expires_at: datetime,
    ) -> None:
        """Link or replace a principal's token for a service."""
        async with self.db.session() as session:
            result = await session.execute(
                select(OAuthTokenRecord).where(
                    and_(
                        OAuthTokenRecord.principal_id == principal_id,
                        OAuthTokenRecord.service_name == service_name,
                    )
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = OAuthTokenRecord(
                    principal_id=principal_id, service_name=service_name
                )
                session.add(record)
            record.access_token = access_token
            record.expires_at = expires_at
