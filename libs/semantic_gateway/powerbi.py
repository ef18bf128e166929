"""
Power BI implementation of the remote query service.

DAX queries go through the dataset ``executeQueries`` REST endpoint; the
dataset ``tables`` endpoint serves as the descriptive channel.
"""

from typing import Any

import httpx
import structlog

from .errors import MalformedResultError, RemoteQueryError, sanitize_error_message
from .models import ResultTable, SessionDescriptor, TabularResult
from .providers import RemoteQueryService


def _error_message(response: httpx.Response) -> tuple[str, str | None]:
    """Extract ``(message, code)`` from a Power BI error payload."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", None

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        pbi_error = error.get("pbi.error")
        details = pbi_error.get("details") if isinstance(pbi_error, dict) else None
        detail_values = []
        for item in details if isinstance(details, list) else []:
            detail = item.get("detail") if isinstance(item, dict) else None
            if isinstance(detail, dict) and detail.get("value"):
                detail_values.append(str(detail["value"]))
        message = error.get("message") or "; ".join(detail_values) or error.get("code")
        return str(message or f"HTTP {response.status_code}"), error.get("code")

    return f"HTTP {response.status_code}", None


class PowerBIQueryService(RemoteQueryService):
    """Talks to the Power BI REST API with the session's bearer token."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 60.0):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = structlog.get_logger(__name__).bind(component="powerbi_service")

    async def _request(
        self,
        session: SessionDescriptor,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{session.endpoint.rest_base_url}{path}"
        headers = {"Authorization": f"Bearer {session.access_token}"}

        try:
            response = await self.client.request(method, url, json=json, headers=headers)
        except httpx.TransportError as e:
            sanitized = sanitize_error_message(str(e) or type(e).__name__)
            self.logger.warning("transport_error", path=path, error=sanitized)
            raise RemoteQueryError(f"Request failed: {sanitized}") from e

        if response.is_error:
            message, code = _error_message(response)
            self.logger.warning(
                "remote_error",
                path=path,
                status=response.status_code,
                code=code,
                error=sanitize_error_message(message),
            )
            raise RemoteQueryError(message, status=response.status_code, code=code)

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResultError(f"Response from {path} is not JSON") from e
        if not isinstance(payload, dict):
            raise MalformedResultError(f"Unexpected payload type from {path}")
        return payload

    async def execute_query(
        self, session: SessionDescriptor, dataset_id: str, query: str
    ) -> TabularResult:
        payload = await self._request(
            session,
            "POST",
            f"/datasets/{dataset_id}/executeQueries",
            json={
                "queries": [{"query": query}],
                "serializerSettings": {"includeNulls": True},
            },
        )

        results = payload.get("results") or []
        if not results:
            return TabularResult()

        first = results[0]
        if not isinstance(first, dict):
            raise MalformedResultError("Unexpected query result entry")
        error = first.get("error")
        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            message = error.get("message") or error.get("code") or "Query failed"
            raise RemoteQueryError(message, status=400, code=error.get("code"))

        return TabularResult(
            tables=[
                ResultTable(rows=table.get("rows") or [])
                for table in first.get("tables") or []
            ]
        )

    async def describe_dataset(
        self, session: SessionDescriptor, dataset_id: str
    ) -> dict[str, Any]:
        payload = await self._request(session, "GET", f"/datasets/{dataset_id}/tables")
        return {"tables": payload.get("value") or []}

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
