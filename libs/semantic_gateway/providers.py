"""
Collaborator interfaces consumed by the gateway.

The gateway never issues or refreshes tokens and never decides how snapshots
are stored; it only talks to these interfaces.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .models import EndpointDescriptor, SessionDescriptor, TabularResult, TokenGrant

if TYPE_CHECKING:
    from .metadata.models import SchemaSnapshot


class TokenProvider(ABC):
    """Source of valid bearer tokens for a principal."""

    @abstractmethod
    async def get_valid_token(
        self, principal_id: str, service_name: str
    ) -> TokenGrant | None:
        """
        Return an unexpired token for the principal, or ``None``.

        ``None`` means the principal has no linked credential for the service.
        """
        pass


class StaticTokenProvider(TokenProvider):
    """In-memory token provider for development and tests."""

    def __init__(self, tokens: dict[tuple[str, str], TokenGrant] | None = None):
        self._tokens: dict[tuple[str, str], TokenGrant] = dict(tokens or {})
        self.calls = 0

    def set_token(self, principal_id: str, service_name: str, grant: TokenGrant) -> None:
        self._tokens[(principal_id, service_name)] = grant

    def revoke(self, principal_id: str, service_name: str) -> None:
        self._tokens.pop((principal_id, service_name), None)

    async def get_valid_token(
        self, principal_id: str, service_name: str
    ) -> TokenGrant | None:
        self.calls += 1
        return self._tokens.get((principal_id, service_name))


class RemoteQueryService(ABC):
    """The remote analytical engine."""

    @abstractmethod
    async def execute_query(
        self, session: SessionDescriptor, dataset_id: str, query: str
    ) -> TabularResult:
        """
        Execute a query against a dataset.

        Raises:
            RemoteQueryError: On any failure, with ``status`` set when the
                service answered with a structured error.
        """
        pass

    @abstractmethod
    async def describe_dataset(
        self, session: SessionDescriptor, dataset_id: str
    ) -> dict[str, Any]:
        """Read the descriptive (REST) view of a dataset's schema."""
        pass


class SnapshotStore(ABC):
    """Versioned persistence of schema snapshots."""

    @abstractmethod
    async def save(self, dataset_key: str, snapshot: "SchemaSnapshot") -> "SchemaSnapshot":
        """Store the snapshot, bump its schema version and stamp last sync."""
        pass

    @abstractmethod
    async def load(self, dataset_key: str) -> "SchemaSnapshot | None":
        """Return the stored snapshot, or ``None``."""
        pass


def build_xmla_endpoint(
    workspace_id: str,
    xmla_base_url: str = "powerbi://api.powerbi.com/v1.0/myorg",
    api_base_url: str = "https://api.powerbi.com/v1.0/myorg",
) -> EndpointDescriptor:
    """Default endpoint builder for a workspace."""
    return EndpointDescriptor(
        server=f"{xmla_base_url.rstrip('/')}/{workspace_id}",
        database=workspace_id,
        rest_base_url=f"{api_base_url.rstrip('/')}/groups/{workspace_id}",
    )


def dataset_key(tenant_id: str, dataset_id: str) -> str:
    """Persistence key of a dataset's snapshot."""
    return f"{tenant_id}:{dataset_id}"
