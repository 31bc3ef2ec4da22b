"""
FastAPI application factory for the settlement REST surface.

``create_app`` wires configuration, the database engine, the ORM
immutability guards, error rendering and the per-request log context.
Tests build the app with ``init_database=False`` after initializing the
engine themselves.
"""

import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from settlement_api.errors import install_error_handlers
from settlement_api.routes import bundles_router, waiting_router
from settlement_config import get_active_config
from settlement_config.schema import SettlementConfig
from settlement_kernel import __version__
from settlement_kernel.db.engine import (
    check_database_connection,
    create_tables,
    init_engine_from_url,
)
from settlement_kernel.db.immutability import register_immutability_listeners
from settlement_kernel.logging_config import LogContext, configure_logging, get_logger

logger = get_logger("api")

REQUEST_ID_HEADER = "X-Request-Id"


def create_app(
    config: SettlementConfig | None = None,
    *,
    init_database: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Settlement configuration; loads the ``default`` set when
            omitted.
        init_database: If True, initialize the engine from
            ``config.database`` and create missing tables.
    """
    config = config or get_active_config()
    configure_logging()

    if init_database:
        if not config.database.url:
            raise ValueError("database.url is not configured")
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )
        create_tables()
    register_immutability_listeners()

    app = FastAPI(
        title="Freight Settlement Engine",
        version=__version__,
        description="Settlement bundles for shipper invoicing and carrier payouts.",
    )
    app.state.config = config

    install_error_handlers(app)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        actor_id = request.headers.get("X-Actor-Id")
        LogContext.clear()
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            t0 = time.monotonic()
            response = await call_next(request)
            logger.info(
                "request_completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(bundles_router)
    app.include_router(waiting_router)

    @app.get("/health", tags=["System"], summary="Health check")
    def health():
        try:
            check_database_connection()
        except Exception as exc:
            logger.error("health_check_failed", extra={"error": str(exc)})
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "disconnected"},
            )
        return {
            "status": "healthy",
            "database": "connected",
            "config": config.name,
            "config_checksum": config.checksum,
        }

    logger.info(
        "app_created",
        extra={"config_name": config.name, "config_version": config.version},
    )
    return app
