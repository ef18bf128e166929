"""
Wiring of the gateway components.

The gateway is an explicit context object built once per process and handed
to whoever needs it; nothing here is a module-level singleton.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import Request

from .config import GatewaySettings, get_gateway_settings
from .executor import QueryExecutor
from .metadata.aggregator import MetadataAggregator
from .pool import SessionPool
from .powerbi import PowerBIQueryService
from .providers import (
    RemoteQueryService,
    SnapshotStore,
    TokenProvider,
    build_xmla_endpoint,
)
from .storage.database import DatabaseManager
from .storage.repository import SQLAlchemySnapshotStore, SQLAlchemyTokenProvider


class SemanticGateway:
    """
    Session pool, executor and metadata aggregator sharing one lifecycle.

    ``start()`` launches the pool sweep and prepares storage; ``stop()``
    cancels the sweep and closes the resources the gateway created itself.
    """

    def __init__(
        self,
        pool: SessionPool,
        executor: QueryExecutor,
        aggregator: MetadataAggregator,
        database: DatabaseManager | None = None,
        remote_service: RemoteQueryService | None = None,
    ):
        self.pool = pool
        self.executor = executor
        self.aggregator = aggregator
        self.database = database
        self._owned_remote_service = remote_service
        self.logger = structlog.get_logger(__name__).bind(component="semantic_gateway")

    @classmethod
    def create(
        cls,
        token_provider: TokenProvider,
        remote_service: RemoteQueryService,
        store: SnapshotStore | None = None,
        settings: GatewaySettings | None = None,
    ) -> "SemanticGateway":
        """Build a gateway around injected collaborators."""
        settings = settings or GatewaySettings()
        pool = SessionPool(
            token_provider,
            config=settings.pool_config(),
            endpoint_builder=partial(
                build_xmla_endpoint,
                xmla_base_url=settings.xmla_base_url,
                api_base_url=settings.api_base_url,
            ),
            service_name=settings.token_service_name,
        )
        executor = QueryExecutor(pool, remote_service, policy=settings.retry_policy())
        return cls(pool, executor, MetadataAggregator(executor, store))

    @classmethod
    def from_settings(cls, settings: GatewaySettings | None = None) -> "SemanticGateway":
        """Build a gateway backed by the database and the Power BI REST API."""
        settings = settings or get_gateway_settings()
        database = DatabaseManager(settings.database_url, echo=settings.echo_sql)
        remote_service = PowerBIQueryService(timeout=settings.http_timeout_seconds)

        gateway = cls.create(
            SQLAlchemyTokenProvider(database),
            remote_service,
            store=SQLAlchemySnapshotStore(database),
            settings=settings,
        )
        gateway.database = database
        gateway._owned_remote_service = remote_service
        return gateway

    async def start(self) -> None:
        if self.database is not None:
            await self.database.create_all_tables()
        await self.pool.start()
        self.logger.info(
            "semantic_gateway_started",
            max_pool_size=self.pool.config.max_pool_size,
            max_attempts=self.executor.policy.max_attempts,
        )

    async def stop(self) -> None:
        await self.pool.stop()
        await self.pool.clear()

        if isinstance(self._owned_remote_service, PowerBIQueryService):
            await self._owned_remote_service.close()
        if self.database is not None:
            await self.database.close()

        self.logger.info("semantic_gateway_stopped")


@asynccontextmanager
async def gateway_lifespan(
    gateway: SemanticGateway,
) -> AsyncGenerator[SemanticGateway, None]:
    """
    Run a gateway between ``start()`` and ``stop()``.

    Yields:
        SemanticGateway: The started gateway
    """
    await gateway.start()
    try:
        yield gateway
    finally:
        await gateway.stop()


def get_semantic_gateway(request: Request) -> SemanticGateway:
    """FastAPI dependency returning the application's gateway."""
    return request.app.state.gateway
