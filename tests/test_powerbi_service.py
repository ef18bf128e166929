"""Tests for the Power BI REST client."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from libs.semantic_gateway.errors import (
    ErrorKind,
    MalformedResultError,
    RemoteQueryError,
    classify_error,
)
from libs.semantic_gateway.models import PoolKey, SessionDescriptor
from libs.semantic_gateway.powerbi import PowerBIQueryService
from libs.semantic_gateway.providers import build_xmla_endpoint


@pytest.fixture
def session():
    now = datetime.now(UTC)
    return SessionDescriptor(
        identity=PoolKey(tenant_id="t", workspace_id="ws-1", principal_id="u"),
        access_token="secret-token",
        token_expiry=now + timedelta(hours=1),
        endpoint=build_xmla_endpoint("ws-1"),
        created_at=now,
    )


def service_for(handler) -> PowerBIQueryService:
    return PowerBIQueryService(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestExecuteQuery:
    @pytest.mark.asyncio
    async def test_posts_query_with_bearer_token(self, session):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"results": [{"tables": [{"rows": [{"[Total]": 42}]}]}]},
            )

        service = service_for(handler)
        result = await service.execute_query(session, "ds-1", 'EVALUATE ROW("Total", 42)')

        assert seen["url"] == (
            "https://api.powerbi.com/v1.0/myorg/groups/ws-1/datasets/ds-1/executeQueries"
        )
        assert seen["auth"] == "Bearer secret-token"
        assert seen["body"]["queries"] == [{"query": 'EVALUATE ROW("Total", 42)'}]
        assert result.rows == [{"[Total]": 42}]
        assert result.row_count == 1

    @pytest.mark.asyncio
    async def test_empty_results(self, session):
        service = service_for(lambda request: httpx.Response(200, json={"results": []}))

        result = await service.execute_query(session, "ds-1", "EVALUATE T")

        assert result.rows is None

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self, session):
        def handler(request):
            return httpx.Response(
                400,
                json={
                    "error": {
                        "code": "DatasetExecuteQueriesError",
                        "message": "Query (1, 10) Cannot find table 'Nope'.",
                    }
                },
            )

        with pytest.raises(RemoteQueryError) as exc_info:
            await service_for(handler).execute_query(session, "ds-1", "EVALUATE Nope")

        error = exc_info.value
        assert error.status == 400
        assert error.code == "DatasetExecuteQueriesError"
        assert "Cannot find table" in str(error)
        assert classify_error(error) == ErrorKind.FATAL

    @pytest.mark.asyncio
    async def test_error_details_fallback(self, session):
        def handler(request):
            return httpx.Response(
                400,
                json={
                    "error": {
                        "code": "DatasetExecuteQueriesError",
                        "pbi.error": {
                            "details": [
                                {"detail": {"value": "Column 'X' not found."}},
                                {"detail": None},
                                "unexpected",
                            ]
                        },
                    }
                },
            )

        with pytest.raises(RemoteQueryError) as exc_info:
            await service_for(handler).execute_query(session, "ds-1", "EVALUATE T")

        assert str(exc_info.value) == "Column 'X' not found."
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pbi_error", [None, "oops", {"details": None}])
    async def test_irregular_error_payload_keeps_status(self, session, pbi_error):
        def handler(request):
            return httpx.Response(
                400, json={"error": {"code": "BadRequest", "pbi.error": pbi_error}}
            )

        with pytest.raises(RemoteQueryError) as exc_info:
            await service_for(handler).execute_query(session, "ds-1", "EVALUATE T")

        assert exc_info.value.status == 400
        assert str(exc_info.value) == "BadRequest"
        assert classify_error(exc_info.value) == ErrorKind.FATAL

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, session):
        service = service_for(lambda request: httpx.Response(503, text="Unavailable"))

        with pytest.raises(RemoteQueryError) as exc_info:
            await service.execute_query(session, "ds-1", "EVALUATE T")

        assert exc_info.value.status == 503
        assert classify_error(exc_info.value) == ErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self, session):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteQueryError) as exc_info:
            await service_for(handler).execute_query(session, "ds-1", "EVALUATE T")

        assert exc_info.value.status is None
        assert classify_error(exc_info.value) == ErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_query_level_error(self, session):
        def handler(request):
            return httpx.Response(
                200,
                json={"results": [{"error": {"code": "QueryError", "message": "Bad DAX"}}]},
            )

        with pytest.raises(RemoteQueryError) as exc_info:
            await service_for(handler).execute_query(session, "ds-1", "EVALUATE T")

        assert str(exc_info.value) == "Bad DAX"
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_non_json_response_is_malformed(self, session):
        service = service_for(lambda request: httpx.Response(200, text="<html/>"))

        with pytest.raises(MalformedResultError):
            await service.execute_query(session, "ds-1", "EVALUATE T")


class TestDescribeDataset:
    @pytest.mark.asyncio
    async def test_lists_tables(self, session):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            return httpx.Response(
                200, json={"value": [{"name": "Sales", "columns": [{"name": "Amount"}]}]}
            )

        payload = await service_for(handler).describe_dataset(session, "ds-1")

        assert seen["method"] == "GET"
        assert seen["path"] == "/v1.0/myorg/groups/ws-1/datasets/ds-1/tables"
        assert payload == {
            "tables": [{"name": "Sales", "columns": [{"name": "Amount"}]}]
        }

    @pytest.mark.asyncio
    async def test_unauthorized(self, session):
        service = service_for(lambda request: httpx.Response(401, json={}))

        with pytest.raises(RemoteQueryError) as exc_info:
            await service.describe_dataset(session, "ds-1")

        assert exc_info.value.status == 401


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_only_owned_client(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        service = PowerBIQueryService(client=client)

        await service.close()
        assert not client.is_closed
        await client.aclose()

        owned = PowerBIQueryService()
        await owned.close()
        assert owned.client.is_closed
