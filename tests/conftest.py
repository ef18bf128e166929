"""Pytest configuration and shared fixtures."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from libs.semantic_gateway.config import RetryPolicy, SessionPoolConfig
from libs.semantic_gateway.executor import QueryExecutor
from libs.semantic_gateway.models import (
    PoolKey,
    ResultTable,
    SessionDescriptor,
    TabularResult,
    TokenGrant,
)
from libs.semantic_gateway.pool import SessionPool
from libs.semantic_gateway.providers import RemoteQueryService, StaticTokenProvider

SERVICE = "powerbi"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeRemoteService(RemoteQueryService):
    """
    Scriptable remote query service.

    ``script`` items are consumed one per call; once it is empty, the first
    ``query_results`` entry whose key occurs in the query wins, then
    ``default``. Exceptions are raised instead of returned.
    """

    def __init__(self):
        self.calls: list[tuple[SessionDescriptor, str, str]] = []
        self.describe_calls = 0
        self.script: list[Any] = []
        self.query_results: dict[str, Any] = {}
        self.default: Any = TabularResult(
            tables=[ResultTable(rows=[{"[Value]": 1}, {"[Value]": 2}])]
        )
        self.description: Any = {"tables": []}
        self.delay = 0.0

    async def execute_query(
        self, session: SessionDescriptor, dataset_id: str, query: str
    ) -> TabularResult:
        self.calls.append((session, dataset_id, query))
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.script:
            item = self.script.pop(0)
        else:
            item = next(
                (v for k, v in self.query_results.items() if k in query), self.default
            )
        if isinstance(item, Exception):
            raise item
        return item

    async def describe_dataset(
        self, session: SessionDescriptor, dataset_id: str
    ) -> dict[str, Any]:
        self.describe_calls += 1
        if isinstance(self.description, Exception):
            raise self.description
        return self.description


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity():
    return PoolKey(tenant_id="tenant-1", workspace_id="ws-1", principal_id="user-1")


@pytest.fixture
def token_provider(clock):
    provider = StaticTokenProvider()
    for principal in ("user-1", "user-2", "user-3"):
        provider.set_token(
            principal,
            SERVICE,
            TokenGrant(
                access_token=f"token-{principal}",
                expires_at=clock.now + timedelta(hours=1),
            ),
        )
    return provider


@pytest.fixture
def pool_config():
    return SessionPoolConfig(
        max_pool_size=10,
        max_connection_age_seconds=1800,
        token_expiry_buffer_seconds=300,
        cleanup_interval_seconds=300,
    )


@pytest.fixture
def pool(token_provider, pool_config, clock):
    return SessionPool(token_provider, config=pool_config, clock=clock)


@pytest.fixture
def remote():
    return FakeRemoteService()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def retry_policy():
    return RetryPolicy(
        max_attempts=3,
        base_delay_seconds=1.0,
        max_delay_seconds=10.0,
        jitter_fraction=0.2,
        timeout_seconds=5.0,
    )


@pytest.fixture
def executor(pool, remote, retry_policy, sleeper):
    return QueryExecutor(pool, remote, policy=retry_policy, sleep=sleeper)
