import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from libs.observability import (
    CorrelationMiddleware,
    LoggingConfig,
    configure_structured_logging,
)
from libs.semantic_gateway import GatewaySettings, SemanticGateway
from services.semantic_api.routes import xmla
from services.semantic_api.schemas import HealthStatus, StandardResponse

API_VERSION = "1.0.0"


def create_app(
    gateway: SemanticGateway | None = None, settings: GatewaySettings | None = None
) -> FastAPI:
    """
    Build the API application.

    Args:
        gateway: Pre-built gateway; built from settings at startup when omitted
        settings: Gateway settings; read from the environment when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan management."""
        gateway_settings = settings or GatewaySettings()
        configure_structured_logging(
            LoggingConfig(
                level=gateway_settings.log_level, format=gateway_settings.log_format
            )
        )

        app.state.gateway = gateway or SemanticGateway.from_settings(gateway_settings)
        app.state.start_time = time.time()
        await app.state.gateway.start()

        yield

        await app.state.gateway.stop()

    app = FastAPI(
        title="Semantic Gateway API",
        description="Resilient XMLA query execution and metadata extraction for semantic models",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationMiddleware)
    app.include_router(xmla.router)

    @app.get("/health", response_model=StandardResponse[HealthStatus])
    async def health_check(request: Request) -> StandardResponse[HealthStatus]:
        """Service health including pool and database state."""
        gateway: SemanticGateway = request.app.state.gateway
        checks = {
            "session_pool": {
                "status": "healthy",
                "current_pool_size": len(gateway.pool),
                "cleanup_running": gateway.pool.running,
            }
        }

        healthy = True
        if gateway.database is not None:
            database_ok = await gateway.database.health_check()
            checks["database"] = {"status": "healthy" if database_ok else "unhealthy"}
            healthy = database_ok

        status = HealthStatus(
            status="healthy" if healthy else "unhealthy",
            checks=checks,
            version=API_VERSION,
            uptime=time.time() - request.app.state.start_time,
        )
        return StandardResponse(
            success=healthy,
            data=status,
            message="Service is healthy" if healthy else "Service is degraded",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
