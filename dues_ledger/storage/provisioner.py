"""
Lazy schema and seed-data initialization for tenant partitions.

Runs on first use of a partition and whenever a tenant is registered. Safe
to call any number of times, from any number of concurrent requests.
"""

import asyncio
import logging
from collections import defaultdict

from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError

from dues_ledger.core.exceptions import StorageUnavailable
from dues_ledger.models.base import TenantBase
from dues_ledger.models.contribution import DUES_TYPE_NAME, ContributionType
from dues_ledger.storage.pool import HandlePool, TenantHandle
from dues_ledger.storage.strategy import BackingStrategy

# Register every tenant table on TenantBase.metadata
from dues_ledger.models import activity_log, expenditure, member, receipt, reminder, subgroup  # noqa: F401

logger = logging.getLogger(__name__)


class SchemaProvisioner:
    """
    Creates tenant tables and seeds the system Dues contribution type.

    Concurrency: one asyncio.Lock per storage identifier serializes
    provisioning of a partition inside this process; DDL uses checkfirst and
    tolerates "already exists" errors from other processes, and the seed is
    check-then-insert with unique violations treated as success.
    """

    def __init__(self, pool: HandlePool, strategy: BackingStrategy):
        self.pool = pool
        self.strategy = strategy
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._provisioned: set[tuple[str, int]] = set()

    def is_memoized(self, storage_id: str, tenant_id: int) -> bool:
        return (storage_id, tenant_id) in self._provisioned

    def forget(self, storage_id: str, tenant_id: int | None = None) -> None:
        """Drop memo entries for a partition (e.g. after it was closed), or for one tenant in it."""
        self._provisioned = {
            key
            for key in self._provisioned
            if key[0] != storage_id or (tenant_id is not None and key[1] != tenant_id)
        }

    async def ensure_provisioned(self, storage_id: str, tenant_id: int) -> TenantHandle:
        """
        Make sure the partition exists, has every tenant table and is seeded.

        Args:
            storage_id: Partition to provision
            tenant_id: Tenant whose seed rows are checked

        Returns:
            Healthy handle on the provisioned partition

        Raises:
            StorageUnavailable: If the partition cannot be created, reached,
                inspected or seeded
        """
        async with self._locks[storage_id]:
            handle = await self._acquire(storage_id)
            if (storage_id, tenant_id) in self._provisioned:
                return handle

            try:
                if not await self.is_provisioned(handle):
                    await self._create_tables(handle)
                await self._seed(handle, tenant_id)
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Provisioning tenant {tenant_id} in partition {storage_id} failed: {e}")
                raise StorageUnavailable(storage_id, f"provisioning failed: {e}") from e

            self._provisioned.add((storage_id, tenant_id))
            logger.info(f"Provisioned tenant {tenant_id} in partition {storage_id}")
            return handle

    async def _acquire(self, storage_id: str) -> TenantHandle:
        try:
            return await self.pool.get_handle(storage_id)
        except StorageUnavailable as e:
            logger.info(f"Partition {storage_id} unreachable ({e.reason}); creating it")

        try:
            await self.strategy.create_partition(storage_id)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(storage_id, f"partition creation failed: {e}") from e
        return await self.pool.get_handle(storage_id)

    async def is_provisioned(self, handle: TenantHandle) -> bool:
        """True when every tenant table exists in the partition."""
        async with handle.begin() as conn:
            existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        return set(TenantBase.metadata.tables).issubset(existing)

    async def _create_tables(self, handle: TenantHandle) -> None:
        try:
            async with handle.begin() as conn:
                await conn.run_sync(TenantBase.metadata.create_all, checkfirst=True)
        except (OperationalError, ProgrammingError) as e:
            # Another process created the tables between our check and our DDL
            if "already exists" not in str(e).lower() or not await self.is_provisioned(handle):
                raise StorageUnavailable(handle.storage_id, f"schema creation failed: {e}") from e
            logger.debug(f"Tables in {handle.storage_id} were created concurrently")
            return
        logger.info(f"Created tenant tables in partition {handle.storage_id}")

    async def _seed(self, handle: TenantHandle, tenant_id: int) -> None:
        async with handle.session(tenant_id) as session:
            existing = await session.scalar(
                select(ContributionType.id).where(
                    ContributionType.tenant_id == tenant_id,
                    ContributionType.name == DUES_TYPE_NAME,
                )
            )
            if existing is not None:
                return

            session.add(
                ContributionType(
                    tenant_id=tenant_id,
                    name=DUES_TYPE_NAME,
                    description="Monthly membership dues",
                    is_system=True,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Dues type for tenant {tenant_id} was seeded concurrently")
                return
        logger.info(f"Seeded Dues contribution type for tenant {tenant_id}")
