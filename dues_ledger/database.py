import logging
from pathlib import Path
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dues_ledger.config import Settings
from dues_ledger.models.base import RegistryBase

# Register registry tables on RegistryBase.metadata
from dues_ledger.models import tenant, user  # noqa: F401

logger = logging.getLogger(__name__)


def build_registry(settings: Settings) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the registry engine and session factory.

    The registry holds tenants and principals and is shared by every request,
    independent of the tenancy strategy.
    """
    url = make_url(settings.DATABASE_URL)
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": settings.DEBUG,  # Log SQL queries in debug mode
    }
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)

    engine = create_async_engine(settings.DATABASE_URL, **engine_kwargs)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    return engine, session_factory


async def init_registry(engine: AsyncEngine) -> None:
    """Create registry tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(RegistryBase.metadata.create_all)
    logger.info("Registry tables ready")


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency for registry sessions.

    Yields a session from the factory built in the application lifespan and
    ensures it's closed after use.

    Usage:
        @router.get("/tenants")
        async def list_tenants(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with request.app.state.registry_sessionmaker() as db:
        yield db
