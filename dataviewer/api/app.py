"""FastAPI application for the data viewer."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dataviewer.api.routes import databases, export, rows
from dataviewer.core.config import Settings, get_settings
from dataviewer.core.exceptions import ApplicationError
from dataviewer.core.logging import get_logger
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository
from dataviewer.services.auth import (
    AccessGate,
    AuthService,
    GrantStore,
    SqlGrantStore,
    StaticGrantStore,
)
from dataviewer.services.export import ExportService
from dataviewer.services.query import QueryExecutor, QueryPlanner

logger = get_logger(__name__)


def _build_grant_store(settings: Settings, registry: ConnectionRegistry) -> GrantStore:
    if settings.access.grant_database:
        return SqlGrantStore(registry, settings.access.grant_database)
    return StaticGrantStore(settings.access.grants)


async def application_error_handler(request: Request, exc: ApplicationError):
    """Render application errors as ``{"error": message}``."""
    message = exc.message
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        message = getattr(exc, "public_message", "Internal server error")

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code, content={"error": message}, headers=headers
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
):
    """Render request body validation errors."""
    details = [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422, content={"error": "Invalid request", "details": details}
    )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ConnectionRegistry] = None,
    grant_store: Optional[GrantStore] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Application settings (defaults to the cached settings)
        registry: Connection registry (built from settings when omitted)
        grant_store: Table grant source (built from settings when omitted)

    Returns:
        Configured application
    """
    settings = settings or get_settings()
    registry = registry or ConnectionRegistry(
        settings.get_database_sources(),
        settings.pool,
        settings.security.encryption_key,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.shutdown()
        logger.info("Connection pools closed")

    app = FastAPI(
        title=settings.app_name,
        description="Read-only table browser and CSV export API",
        version=settings.app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    catalog = CatalogRepository(registry)
    executor = QueryExecutor(registry)
    app.state.settings = settings
    app.state.registry = registry
    app.state.catalog = catalog
    app.state.executor = executor
    app.state.planner = QueryPlanner(registry, catalog, settings.query)
    app.state.export_service = ExportService(registry, executor, settings.export)
    app.state.auth_service = AuthService(settings.security)
    app.state.access_gate = AccessGate(
        grant_store or _build_grant_store(settings, registry),
        settings.export,
        settings.access,
    )

    app.add_exception_handler(ApplicationError, application_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    # Include routers
    app.include_router(databases.router, prefix="/api", tags=["catalog"])
    app.include_router(rows.router, prefix="/api", tags=["rows"])
    app.include_router(export.router, prefix="/api", tags=["export"])

    @app.get("/api/health", tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "dataviewer"}

    logger.info(
        f"FastAPI application created with {len(registry.database_names())} databases"
    )
    return app
