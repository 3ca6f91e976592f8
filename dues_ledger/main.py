import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dues_ledger.config import Settings, settings
from dues_ledger.core.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateTransition,
    NotFoundException,
    TenantError,
    TenantGone,
    TenantNotFound,
    TenantStorageError,
    UnauthorizedException,
    ValidationException,
)
from dues_ledger.database import build_registry, init_registry
from dues_ledger.routes import (
    contribution_routes,
    expenditure_routes,
    member_routes,
    report_routes,
    subgroup_routes,
    tenant_routes,
)
from dues_ledger.services.tenant_context_service import TenantContextResolver
from dues_ledger.storage.pool import HandlePool
from dues_ledger.storage.provisioner import SchemaProvisioner
from dues_ledger.storage.strategy import select_strategy

logger = logging.getLogger(__name__)

# Status codes for tenant resolution failures; anything else in the family is 403
TENANT_ERROR_STATUS = {
    TenantNotFound: status.HTTP_404_NOT_FOUND,
    TenantGone: status.HTTP_410_GONE,
    TenantStorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def create_app(app_settings: Settings = settings) -> FastAPI:
    """
    Build the application.

    The lifespan creates the registry engine, the backing strategy, the
    handle pool, the provisioner and the resolver, and drains the pool on
    shutdown (uvicorn turns SIGINT/SIGTERM into lifespan shutdown).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine, session_factory = build_registry(app_settings)
        await init_registry(engine)

        strategy = select_strategy(app_settings)
        pool = HandlePool(
            strategy.url_for,
            connect_timeout=app_settings.HANDLE_CONNECT_TIMEOUT,
            max_concurrent_ops=app_settings.TENANT_MAX_CONCURRENT_OPS,
            pool_size=app_settings.TENANT_POOL_SIZE,
            max_overflow=app_settings.TENANT_POOL_MAX_OVERFLOW,
            idle_timeout=app_settings.HANDLE_IDLE_TIMEOUT,
            echo=app_settings.DEBUG,
        )
        await pool.init(sweep_interval=app_settings.POOL_SWEEP_INTERVAL)
        provisioner = SchemaProvisioner(pool, strategy)

        app.state.settings = app_settings
        app.state.registry_engine = engine
        app.state.registry_sessionmaker = session_factory
        app.state.pool = pool
        app.state.resolver = TenantContextResolver(pool, provisioner, strategy, app_settings)
        async with session_factory() as db:
            await app.state.resolver.validate_default_tenant(db)
        logger.info(f"{app_settings.APP_NAME} {app_settings.APP_VERSION} started")
        try:
            yield
        finally:
            logger.info("Shutting down: draining tenant handles")
            await pool.close_all()
            await engine.dispose()

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        docs_url="/docs" if app_settings.DEBUG else None,  # Disable in production
        redoc_url="/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS middleware
    cors_origins = app_settings.cors_origins_list
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=app_settings.CORS_ALLOW_CREDENTIALS,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Exception handlers
    @app.exception_handler(UnauthorizedException)
    async def unauthorized_exception_handler(request: Request, exc: UnauthorizedException):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc)},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(NotFoundException)
    async def not_found_exception_handler(request: Request, exc: NotFoundException):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(ForbiddenException)
    async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(request: Request, exc: ValidationException):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_exception_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidStateTransition):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "current": exc.current, "target": exc.target},
        )

    @app.exception_handler(TenantError)
    async def tenant_exception_handler(request: Request, exc: TenantError):
        status_code = TENANT_ERROR_STATUS.get(type(exc), status.HTTP_403_FORBIDDEN)
        if status_code >= 500:
            logger.error(f"Tenant storage failure: {exc} ({exc.reason})")
        return JSONResponse(status_code=status_code, content={"detail": str(exc), **exc.to_dict()})

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        pool = getattr(request.app.state, "pool", None)
        return {
            "status": "healthy",
            "version": app_settings.APP_VERSION,
            "tenancy_strategy": app_settings.TENANCY_STRATEGY,
            "active_partitions": len(pool.list_active()) if pool else 0,
        }

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "message": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "docs": "/docs" if app_settings.DEBUG else "Documentation disabled in production",
        }

    # Include routers
    app.include_router(tenant_routes.router, prefix="/api/tenants", tags=["Tenants"])
    app.include_router(member_routes.router, prefix="/api/members", tags=["Members"])
    app.include_router(subgroup_routes.router, prefix="/api/subgroups", tags=["Subgroups"])
    app.include_router(
        contribution_routes.types_router,
        prefix="/api/contribution-types",
        tags=["Contributions"],
    )
    app.include_router(
        contribution_routes.router, prefix="/api/contributions", tags=["Contributions"]
    )
    app.include_router(
        expenditure_routes.router, prefix="/api/expenditures", tags=["Expenditures"]
    )
    app.include_router(report_routes.router, prefix="/api/reports", tags=["Reports"])

    return app


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
