"""Tests for the semantic gateway API service."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from libs.semantic_gateway import GatewaySettings, SemanticGateway, TokenGrant
from libs.semantic_gateway.errors import RemoteQueryError
from libs.semantic_gateway.models import ResultTable, TabularResult
from libs.semantic_gateway.providers import StaticTokenProvider
from libs.semantic_gateway.storage import InMemorySnapshotStore
from services.semantic_api.main import app as module_app
from services.semantic_api.main import create_app

HEADERS = {"X-Tenant-ID": "tenant-1", "X-User-ID": "user-1"}
QUERY = 'EVALUATE ROW("x", 1)'


@pytest.fixture
def gateway(remote):
    provider = StaticTokenProvider()
    provider.set_token(
        "user-1",
        "powerbi",
        TokenGrant(
            access_token="token-user-1",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        ),
    )
    settings = GatewaySettings(
        base_delay_seconds=0, max_delay_seconds=0, log_format="console"
    )
    return SemanticGateway.create(
        provider, remote, store=InMemorySnapshotStore(), settings=settings
    )


@pytest.fixture
def client(gateway):
    """Create test client for the gateway API."""
    with TestClient(create_app(gateway=gateway)) as test_client:
        yield test_client


def test_app_metadata():
    assert module_app.title == "Semantic Gateway API"
    assert module_app.version == "1.0.0"


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["success"] is True
    assert data["data"]["status"] == "healthy"
    assert data["data"]["checks"]["session_pool"]["cleanup_running"] is True
    assert "X-Correlation-ID" in response.headers


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"


class TestIdentityHeaders:
    def test_missing_headers_rejected(self, client):
        response = client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": QUERY},
        )
        assert response.status_code == 422

    def test_unknown_user_gets_401(self, client):
        response = client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": QUERY},
            headers={"X-Tenant-ID": "tenant-1", "X-User-ID": "stranger"},
        )

        assert response.status_code == 401
        assert "reconnect" in response.json()["detail"]


class TestQueries:
    def test_validate_query(self, client):
        response = client.post("/xmla/validate-query", json={"query": "SELECT 1"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["is_valid"] is False
        assert data["errors"] == ["Query must contain EVALUATE or DEFINE statement"]

    def test_execute(self, client):
        response = client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": QUERY},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["row_count"] == 2
        assert body["data"]["attempts"] == 1

    def test_execute_invalid_query(self, client, remote):
        response = client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": "SELECT 1"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert remote.calls == []

    def test_execute_remote_failure(self, client, remote):
        remote.script = [RemoteQueryError("Cannot find table", status=400)]

        response = client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": QUERY},
            headers=HEADERS,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["data"]["error_kind"] == "fatal"
        assert body["data"]["error"] == "Cannot find table"

    def test_execute_batch(self, client, remote):
        remote.query_results = {"FAIL": RemoteQueryError("Bad", status=400)}

        response = client.post(
            "/xmla/execute-batch",
            json={
                "workspace_id": "ws-1",
                "dataset_id": "ds-1",
                "queries": ["EVALUATE A", "EVALUATE FAIL"],
            },
            headers=HEADERS,
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["successful_queries"] == 1
        assert data["failed_queries"] == 1

    def test_execute_batch_rejects_invalid_query(self, client):
        response = client.post(
            "/xmla/execute-batch",
            json={
                "workspace_id": "ws-1",
                "dataset_id": "ds-1",
                "queries": ["EVALUATE A", "SELECT 1"],
            },
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Query 2 is invalid")


class TestPoolAndStats:
    def test_test_connection_and_pool_stats(self, client):
        response = client.post(
            "/xmla/test-connection", json={"workspace_id": "ws-1"}, headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["data"]["connection_key"] == "tenant-1:ws-1:user-1"

        stats = client.get("/xmla/pool/stats").json()["data"]
        assert stats["current_pool_size"] == 1
        assert stats["connections"][0]["key"] == "tenant-1:ws-1:user-1"

        cleared = client.post("/xmla/pool/clear").json()["data"]
        assert cleared["cleared_connections"] == 1
        assert client.get("/xmla/pool/stats").json()["data"]["current_pool_size"] == 0

    def test_executor_stats_and_reset(self, client):
        client.post(
            "/xmla/execute",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "query": QUERY},
            headers=HEADERS,
        )

        stats = client.get("/xmla/executor/stats").json()["data"]
        assert stats["total_queries"] == 1
        assert stats["success_rate"] == "100.00%"

        reset = client.post("/xmla/executor/reset-stats").json()["data"]
        assert reset["total_queries"] == 0


class TestMetadata:
    @pytest.fixture(autouse=True)
    def schema(self, remote):
        remote.query_results = {
            "INFORMATION_SCHEMA_TABLES": TabularResult(
                tables=[ResultTable(rows=[{"[TableName]": "Sales"}])]
            ),
            "INFORMATION_SCHEMA_COLUMNS": TabularResult(
                tables=[
                    ResultTable(rows=[{"[TableName]": "Sales", "[ColumnName]": "Amount"}])
                ]
            ),
            "INFORMATION_SCHEMA_MEASURES": TabularResult(tables=[ResultTable(rows=[])]),
            "INFORMATION_SCHEMA_RELATIONSHIPS": RemoteQueryError("Unsupported", status=400),
        }
        remote.description = RemoteQueryError("Not found", status=404)

    def test_extract_metadata(self, client):
        response = client.post(
            "/xmla/extract-metadata",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "dataset_name": "Contoso"},
            headers=HEADERS,
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["schema_version"] == 1
        assert data["tables"][0]["column_count"] == 1
        assert data["extraction_methods"] == {
            "tables": True,
            "columns": True,
            "measures": True,
            "relationships": False,
        }

    def test_semantic_context(self, client):
        response = client.post(
            "/xmla/semantic-context",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1", "dataset_name": "Contoso"},
            headers=HEADERS,
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["summary"]["table_count"] == 1
        assert data["glossary"]["tables"]["Sales"]["description"] == "Sales table"
        assert data["text_context"].startswith("Dataset: Contoso")

    def test_cached_metadata(self, client):
        missing = client.get("/xmla/cached-metadata/ds-1", headers=HEADERS)
        assert missing.status_code == 404

        client.post(
            "/xmla/extract-metadata",
            json={"workspace_id": "ws-1", "dataset_id": "ds-1"},
            headers=HEADERS,
        )
        cached = client.get("/xmla/cached-metadata/ds-1", headers=HEADERS)

        assert cached.status_code == 200
        assert cached.json()["data"]["is_cached"] is True
