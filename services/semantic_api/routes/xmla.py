"""
XMLA gateway API endpoints.

Query execution, connection pool management and metadata extraction for
semantic models. The caller's tenant and user come from headers set by the
upstream authentication layer.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException

from libs.semantic_gateway import (
    BatchOutcome,
    ErrorKind,
    PoolKey,
    QueryOutcome,
    SchemaSnapshot,
    SemanticGateway,
    ValidationResult,
    get_semantic_gateway,
)
from libs.semantic_gateway.metadata.models import SemanticContext
from libs.semantic_gateway.models import ExecutorStats, PoolStats
from services.semantic_api.schemas import (
    BatchQueryRequest,
    ClearPoolResponse,
    DatasetRequest,
    ExecuteQueryRequest,
    StandardResponse,
    ValidateQueryRequest,
    WorkspaceRequest,
)

router = APIRouter(prefix="/xmla", tags=["XMLA"])

logger = structlog.get_logger(__name__).bind(component="xmla_routes")


class Caller:
    """Authenticated caller as asserted by the upstream layer."""

    def __init__(self, tenant_id: str, user_id: str):
        self.tenant_id = tenant_id
        self.user_id = user_id

    def identity(self, workspace_id: str) -> PoolKey:
        return PoolKey(
            tenant_id=self.tenant_id,
            workspace_id=workspace_id,
            principal_id=self.user_id,
        )


def get_caller(
    tenant_id: str = Header(..., alias="X-Tenant-ID", min_length=1),
    user_id: str = Header(..., alias="X-User-ID", min_length=1),
) -> Caller:
    return Caller(tenant_id, user_id)


def _raise_for_outcome(outcome: QueryOutcome) -> None:
    # A missing credential is the caller's problem, not the remote service's.
    if outcome.error_kind == ErrorKind.CREATION_ERROR:
        raise HTTPException(status_code=401, detail=outcome.error)


@router.post("/test-connection", response_model=StandardResponse[dict[str, Any]])
async def test_connection(
    request: WorkspaceRequest,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[dict[str, Any]]:
    """Acquire a session for the workspace and report on it."""
    result = await gateway.pool.test_connection(caller.identity(request.workspace_id))
    if not result["success"]:
        raise HTTPException(status_code=401, detail=result["error"])

    return StandardResponse(
        success=True, data=result, message="XMLA connection is available"
    )


@router.get("/pool/stats", response_model=StandardResponse[PoolStats])
async def get_pool_stats(
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[PoolStats]:
    return StandardResponse(success=True, data=gateway.pool.stats())


@router.post("/pool/clear", response_model=StandardResponse[ClearPoolResponse])
async def clear_pool(
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[ClearPoolResponse]:
    cleared = await gateway.pool.clear()
    return StandardResponse(
        success=True,
        data=ClearPoolResponse(cleared_connections=cleared),
        message=f"Cleared {cleared} pooled connections",
    )


@router.get("/executor/stats", response_model=StandardResponse[ExecutorStats])
async def get_executor_stats(
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[ExecutorStats]:
    return StandardResponse(success=True, data=gateway.executor.stats())


@router.post("/executor/reset-stats", response_model=StandardResponse[ExecutorStats])
async def reset_executor_stats(
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[ExecutorStats]:
    gateway.executor.reset_stats()
    return StandardResponse(
        success=True,
        data=gateway.executor.stats(),
        message="Executor statistics reset",
    )


@router.post("/validate-query", response_model=StandardResponse[ValidationResult])
async def validate_query(
    request: ValidateQueryRequest,
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[ValidationResult]:
    return StandardResponse(success=True, data=gateway.executor.validate(request.query))


@router.post("/execute", response_model=StandardResponse[QueryOutcome])
async def execute_query(
    request: ExecuteQueryRequest,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[QueryOutcome]:
    """Validate and execute a DAX query."""
    validation = gateway.executor.validate(request.query)
    if not validation.is_valid:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid DAX query: {'; '.join(validation.errors)}",
        )

    outcome = await gateway.executor.execute(
        caller.identity(request.workspace_id), request.dataset_id, request.query
    )
    _raise_for_outcome(outcome)

    return StandardResponse(
        success=outcome.success,
        data=outcome,
        message=(
            f"Query returned {outcome.row_count} rows"
            if outcome.success
            else "Query execution failed"
        ),
    )


@router.post("/execute-batch", response_model=StandardResponse[BatchOutcome])
async def execute_batch(
    request: BatchQueryRequest,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[BatchOutcome]:
    """Execute independent queries concurrently."""
    for index, query in enumerate(request.queries):
        validation = gateway.executor.validate(query)
        if not validation.is_valid:
            raise HTTPException(
                status_code=400,
                detail=f"Query {index + 1} is invalid: {'; '.join(validation.errors)}",
            )

    batch = await gateway.executor.execute_batch(
        caller.identity(request.workspace_id), request.dataset_id, request.queries
    )
    return StandardResponse(
        success=batch.success,
        data=batch,
        message=(
            f"{batch.successful_queries} of {batch.total_queries} queries succeeded"
        ),
    )


@router.post("/extract-metadata", response_model=StandardResponse[SchemaSnapshot])
async def extract_metadata(
    request: DatasetRequest,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[SchemaSnapshot]:
    """Extract a dataset's schema and store it when a store is configured."""
    aggregator = gateway.aggregator
    snapshot = await aggregator.extract_all(
        caller.identity(request.workspace_id), request.dataset_id, request.dataset_name
    )

    if aggregator.store is not None:
        try:
            snapshot = await aggregator.persist(snapshot)
        except Exception as e:
            logger.error(
                "metadata_persist_failed", dataset_id=request.dataset_id, error=str(e)
            )
            raise HTTPException(
                status_code=500, detail=f"Failed to store metadata: {str(e)}"
            )

    return StandardResponse(
        success=True, data=snapshot, message="Metadata extracted successfully"
    )


@router.post("/semantic-context", response_model=StandardResponse[SemanticContext])
async def semantic_context(
    request: DatasetRequest,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[SemanticContext]:
    try:
        context = await gateway.aggregator.semantic_context(
            caller.identity(request.workspace_id),
            request.dataset_id,
            request.dataset_name,
        )
    except Exception as e:
        logger.error(
            "semantic_context_failed", dataset_id=request.dataset_id, error=str(e)
        )
        raise HTTPException(
            status_code=500, detail=f"Failed to build semantic context: {str(e)}"
        )

    return StandardResponse(success=True, data=context)


@router.get(
    "/cached-metadata/{dataset_id}", response_model=StandardResponse[SchemaSnapshot]
)
async def get_cached_metadata(
    dataset_id: str,
    caller: Caller = Depends(get_caller),
    gateway: SemanticGateway = Depends(get_semantic_gateway),
) -> StandardResponse[SchemaSnapshot]:
    snapshot = await gateway.aggregator.cached_snapshot(caller.tenant_id, dataset_id)
    if snapshot is None:
        raise HTTPException(
            status_code=404, detail=f"No cached metadata for dataset '{dataset_id}'"
        )
    return StandardResponse(success=True, data=snapshot)
