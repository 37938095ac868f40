"""
FastAPI application factory.
"""

from typing import Optional

import structlog
from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse

from bridge_indexer.indexer.service import IndexerService
from bridge_indexer.relayer.health_monitor import HealthStatus, worst_of
from bridge_indexer.relayer.service import RelayerService

from .dependencies import get_indexer, get_relayer
from .middleware import add_middleware
from .routes import stats, users, withdrawals
from .schemas import HealthCheckResponse


logger = structlog.get_logger(__name__)


def create_app(indexer: IndexerService, relayer: Optional[RelayerService] = None) -> FastAPI:
    """
    Build the HTTP API over a running indexer (and optionally a relayer).

    The app does not own the services; starting and closing them is the
    caller's job.
    """
    settings = indexer.context.settings

    app = FastAPI(
        title=f"{settings.app_name} API",
        version=settings.app_version,
        description="""
        Read API for the L1/L2 bridge indexer.

        ## Features

        * **Sync status** - per-chain watermark and distance from head
        * **User activity** - bridge events, deposits and withdrawals per address
        * **Withdrawals** - prove/finalize readiness and timelines
        """,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.indexer = indexer
    app.state.relayer = relayer

    add_middleware(app, settings)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Database, RPC and relayer health"
    )
    async def health_check(
        indexer: IndexerService = Depends(get_indexer),
        relayer: Optional[RelayerService] = Depends(get_relayer)
    ):
        database_ok = await indexer.context.database.health_check()
        rpc_ok = await indexer.is_connected()
        services = {
            "database": "healthy" if database_ok else "unhealthy",
            "rpc": "healthy" if rpc_ok else "degraded",
            "sync": "running" if indexer.is_running else "stopped",
        }

        statuses = [
            HealthStatus.HEALTHY if database_ok else HealthStatus.UNHEALTHY,
            HealthStatus.HEALTHY if rpc_ok else HealthStatus.DEGRADED,
        ]
        relayer_health = None
        if relayer is not None:
            relayer_check = relayer.get_health()
            relayer_health = relayer_check.to_dict()
            # A failing relayer degrades the API but never takes it down
            if relayer_check.status != HealthStatus.HEALTHY:
                statuses.append(HealthStatus.DEGRADED)
        overall = worst_of(*statuses)

        response = HealthCheckResponse(
            status=overall.value,
            version=settings.app_version,
            services=services,
            relayer=relayer_health,
        )
        if overall == HealthStatus.UNHEALTHY:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=response.model_dump(mode="json"),
            )
        return response

    app.include_router(
        stats.router,
        prefix=f"{settings.api_v1_prefix}/stats",
        tags=["Statistics"]
    )
    app.include_router(
        users.router,
        prefix=f"{settings.api_v1_prefix}/users",
        tags=["Users"]
    )
    app.include_router(
        withdrawals.router,
        prefix=f"{settings.api_v1_prefix}/withdrawals",
        tags=["Withdrawals"]
    )

    logger.info("FastAPI application configured")
    return app
