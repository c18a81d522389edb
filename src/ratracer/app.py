"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ratracer.api.routes import races, rats, wallets, webhooks
from ratracer.core import timezone  # noqa: F401  # sets TZ=UTC
from ratracer.core.config import Settings, configure_logging
from ratracer.core.database import setup_db_session
from ratracer.services.exceptions import ServiceError
from ratracer.services.metadata.blob_client import BlobStorageClient
from ratracer.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared resources on startup and release them on shutdown.

    Routes reach the session factory, UoW factory and blob client through
    ``app.state``.
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)

    app.state.session_factory = session_factory
    app.state.uow_factory = create_uow_factory(session_factory)

    if settings.blob_read_write_token:
        app.state.blob_client = BlobStorageClient(
            token=settings.blob_read_write_token, api_url=settings.blob_api_url
        )
    else:
        app.state.blob_client = None
        logger.warning("startup.blob_storage_disabled", reason="BLOB_READ_WRITE_TOKEN not set")

    if not settings.webhook_secret:
        logger.warning("startup.webhook_secret_missing", app_env=settings.app_env)

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render service errors as ``{success: false, error, reason, message}``."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request.failed",
        path=request.url.path,
        error=type(exc).__name__,
        reason=exc.reason,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": type(exc).__name__,
            "reason": exc.reason,
            "message": exc.message,
        },
    )


async def _check_database(session_factory) -> Exception | None:
    """Run SELECT 1; return the failure instead of raising it."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
        return e
    return None


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Rat Racer Backend API",
        description="Contract event reconciliation for rat NFTs and races",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ServiceError, service_error_handler)  # type: ignore[arg-type]

    # Routers carry their own /api prefixes
    app.include_router(webhooks.router)
    app.include_router(rats.router)
    app.include_router(races.router)
    app.include_router(wallets.router)

    @app.get("/health")
    async def health_check(request: Request, response: Response):
        """Report whether the database answers a trivial query (200 or 503)."""
        error = await _check_database(request.app.state.session_factory)
        if error is None:
            return {"status": "healthy"}

        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "unhealthy",
            "error": {"type": type(error).__name__, "message": str(error)},
        }

    return app


# uvicorn ratracer.app:app
app = create_app()
