"""
Best-effort schema discovery.

The four categories are extracted concurrently and settle independently: a
category whose primary query and descriptive fallback both fail contributes
an empty list and a ``False`` extraction flag, never an exception.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ..errors import GatewayError, MalformedResultError
from ..executor import QueryExecutor
from ..models import PoolKey
from ..providers import SnapshotStore, dataset_key
from . import normalize, queries
from .glossary import build_glossary, build_text_summary
from .models import (
    ContextMeasure,
    ContextTable,
    ExtractionMethods,
    Glossary,
    SchemaCounts,
    SchemaSnapshot,
    SemanticContext,
)

CATEGORIES: dict[str, tuple[str, Callable[[Any], list], Callable[[Any], list]]] = {
    "tables": (
        queries.TABLES_QUERY,
        normalize.normalize_tables,
        normalize.tables_from_description,
    ),
    "columns": (
        queries.COLUMNS_QUERY,
        normalize.normalize_columns,
        normalize.columns_from_description,
    ),
    "measures": (
        queries.MEASURES_QUERY,
        normalize.normalize_measures,
        normalize.measures_from_description,
    ),
    "relationships": (
        queries.RELATIONSHIPS_QUERY,
        normalize.normalize_relationships,
        normalize.relationships_from_description,
    ),
}


class MetadataAggregator:
    """Discovers, persists and summarizes a dataset's schema."""

    def __init__(self, executor: QueryExecutor, store: SnapshotStore | None = None):
        self.executor = executor
        self.store = store
        self.logger = structlog.get_logger(__name__).bind(component="metadata_aggregator")

    async def extract_all(
        self, identity: PoolKey, dataset_id: str, dataset_name: str | None = None
    ) -> SchemaSnapshot:
        """Extract every category concurrently into one snapshot."""
        start = time.perf_counter()
        self.logger.info(
            "extracting_metadata", pool_key=identity.key, dataset_id=dataset_id
        )

        # The descriptive view is fetched at most once per extraction and only
        # if some category needs it.
        description: asyncio.Future | None = None

        def describe() -> Awaitable[dict[str, Any]]:
            nonlocal description
            if description is None:
                description = asyncio.ensure_future(
                    self.executor.describe(identity, dataset_id)
                )
            return description

        settled = await asyncio.gather(
            *(
                self._extract_category(name, identity, dataset_id, describe)
                for name in CATEGORIES
            ),
            return_exceptions=True,
        )

        found: dict[str, list] = {}
        flags: dict[str, bool] = {}
        for name, item in zip(CATEGORIES, settled, strict=True):
            if isinstance(item, BaseException):
                self.logger.warning(
                    "category_extraction_failed",
                    category=name,
                    dataset_id=dataset_id,
                    error=str(item),
                    error_type=type(item).__name__,
                )
                found[name], flags[name] = [], False
            else:
                found[name], flags[name] = item, True

        columns = found["columns"]
        tables = [
            table.model_copy(
                update={
                    "column_count": len([c for c in columns if c.table_name == table.name])
                }
            )
            if columns and not table.column_count
            else table
            for table in found["tables"]
        ]

        snapshot = SchemaSnapshot(
            tenant_id=identity.tenant_id,
            workspace_id=identity.workspace_id,
            dataset_id=dataset_id,
            dataset_name=dataset_name or dataset_id,
            tables=tables,
            columns=columns,
            measures=found["measures"],
            relationships=found["relationships"],
            extraction_time_ms=int((time.perf_counter() - start) * 1000),
            extraction_methods=ExtractionMethods(**flags),
        )

        self.logger.info(
            "metadata_extracted",
            dataset_id=dataset_id,
            tables=len(snapshot.tables),
            columns=len(snapshot.columns),
            measures=len(snapshot.measures),
            relationships=len(snapshot.relationships),
            extraction_methods=flags,
            extraction_time_ms=snapshot.extraction_time_ms,
        )
        return snapshot

    async def _extract_category(
        self,
        name: str,
        identity: PoolKey,
        dataset_id: str,
        describe: Callable[[], Awaitable[dict[str, Any]]],
    ) -> list:
        query, primary, fallback = CATEGORIES[name]

        outcome = await self.executor.execute(identity, dataset_id, query)
        if outcome.success and outcome.result is not None:
            try:
                return primary(outcome.result.rows)
            except MalformedResultError as e:
                self.logger.warning("malformed_primary_result", category=name, error=str(e))
        else:
            self.logger.warning(
                "primary_extraction_failed",
                category=name,
                error=outcome.error,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
            )

        self.logger.info("using_descriptive_fallback", category=name)
        return fallback(await describe())

    async def persist(self, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        """
        Store a snapshot, bumping its schema version.

        Raises:
            GatewayError: If no snapshot store is configured.
        """
        if self.store is None:
            raise GatewayError("No snapshot store configured")

        stored = await self.store.save(
            dataset_key(snapshot.tenant_id, snapshot.dataset_id), snapshot
        )
        self.logger.info(
            "metadata_stored",
            dataset_id=snapshot.dataset_id,
            schema_version=stored.schema_version,
        )
        return stored

    def build_glossary(self, snapshot: SchemaSnapshot) -> Glossary:
        return build_glossary(snapshot)

    def build_text_summary(self, snapshot: SchemaSnapshot, glossary: Glossary) -> str:
        return build_text_summary(snapshot, glossary)

    async def semantic_context(
        self, identity: PoolKey, dataset_id: str, dataset_name: str | None = None
    ) -> SemanticContext:
        """Extract, persist when possible, and describe a dataset."""
        snapshot = await self.extract_all(identity, dataset_id, dataset_name)
        if self.store is not None:
            snapshot = await self.persist(snapshot)

        glossary = self.build_glossary(snapshot)
        return SemanticContext(
            dataset_id=snapshot.dataset_id,
            dataset_name=snapshot.dataset_name,
            summary=SchemaCounts(
                table_count=len(snapshot.tables),
                column_count=len(snapshot.columns),
                measure_count=len(snapshot.measures),
                relationship_count=len(snapshot.relationships),
            ),
            tables=[
                ContextTable(
                    name=t.name, description=t.description, column_count=t.column_count
                )
                for t in snapshot.tables
            ],
            measures=[
                ContextMeasure(
                    name=m.name, description=m.description, table_name=m.table_name
                )
                for m in snapshot.measures
            ],
            glossary=glossary,
            text_context=self.build_text_summary(snapshot, glossary),
            extraction_methods=snapshot.extraction_methods,
            schema_version=snapshot.schema_version,
        )

    async def cached_snapshot(
        self, tenant_id: str, dataset_id: str
    ) -> SchemaSnapshot | None:
        """Load the last persisted snapshot, if any."""
        if self.store is None:
            return None

        snapshot = await self.store.load(dataset_key(tenant_id, dataset_id))
        if snapshot is None:
            return None
        return snapshot.model_copy(update={"is_cached": True})
