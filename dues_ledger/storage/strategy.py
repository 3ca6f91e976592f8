"""
Physical backing strategies for tenant data.

Exactly one strategy is selected at startup from TENANCY_STRATEGY. The
model facade is identical under both: every tenant-scoped table carries a
tenant_id column, every query filters on it and every write stamps it.
The strategy only decides which partition (storage identifier, URL) a
tenant's handle points at.
"""

import abc
import logging
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from dues_ledger.config import Settings
from dues_ledger.models.tenant import Tenant

logger = logging.getLogger(__name__)


async def _create_database(url: str, admin_url: str) -> None:
    """Create the database named in `url` if the server does not have it yet."""
    target = make_url(url)
    if target.get_backend_name() == "sqlite":
        if target.database and target.database != ":memory:":
            Path(target.database).parent.mkdir(parents=True, exist_ok=True)
        return

    if target.get_backend_name() != "postgresql":
        logger.warning(f"Cannot create partition for backend {target.get_backend_name()}")
        return

    engine = create_async_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        async with engine.connect() as conn:
            exists = await conn.scalar(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": target.database},
            )
            if not exists:
                # database names are validated against ^[a-z0-9_-]+$ by the registry
                await conn.execute(text(f'CREATE DATABASE "{target.database}"'))
                logger.info(f"Created tenant database: {target.database}")
    finally:
        await engine.dispose()


class BackingStrategy(abc.ABC):
    """Maps tenants to storage partitions."""

    name: str

    def __init__(self, settings: Settings):
        self.settings = settings

    @abc.abstractmethod
    def partition_for(self, tenant: Tenant) -> str:
        """Storage identifier of the partition holding `tenant`'s rows."""

    @abc.abstractmethod
    def url_for(self, storage_id: str) -> str:
        """Connection URL of a partition."""

    async def create_partition(self, storage_id: str) -> None:
        """Create the physical partition if the storage engine needs it."""
        await _create_database(self.url_for(storage_id), self.settings.DATABASE_URL)


class DatabasePerTenantStrategy(BackingStrategy):
    """One physical database per tenant, named by its storage identifier."""

    name = "database"

    def partition_for(self, tenant: Tenant) -> str:
        return tenant.storage_id

    def url_for(self, storage_id: str) -> str:
        return self.settings.tenant_database_url(storage_id)


class SharedTableStrategy(BackingStrategy):
    """All tenants share one database; isolation is by tenant_id only."""

    name = "shared"

    def partition_for(self, tenant: Tenant) -> str:
        return self.settings.SHARED_STORAGE_ID

    def url_for(self, storage_id: str) -> str:
        return self.settings.shared_database_url


def select_strategy(settings: Settings) -> BackingStrategy:
    """Pick the backing strategy once, at process start."""
    strategies = {
        DatabasePerTenantStrategy.name: DatabasePerTenantStrategy,
        SharedTableStrategy.name: SharedTableStrategy,
    }
    strategy = strategies[settings.TENANCY_STRATEGY](settings)
    logger.info(f"Tenancy strategy: {strategy.name}")
    return strategy
