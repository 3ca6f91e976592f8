"""
Tenant context resolution.

Turns an authenticated principal into a TenantContext: a tenant whose
status allows the request, plus a live storage handle on a provisioned
partition. Every failure is a typed TenantError; a partial context is never
returned.
"""

import asyncio
import dataclasses
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.config import Settings
from dues_ledger.core.exceptions import (
    ConflictError,
    ForbiddenException,
    StorageUnavailable,
    TenantGone,
    TenantInactive,
    TenantNotFound,
    TenantRejected,
    TenantStorageError,
)
from dues_ledger.models.role import TenantAccess, TenantStatus
from dues_ledger.models.tenant import Tenant
from dues_ledger.models.tenant_context import Principal, TenantContext
from dues_ledger.repositories.tenant_repository import TenantRepository
from dues_ledger.repositories.user_repository import UserRepository
from dues_ledger.storage.pool import HandlePool, TenantHandle
from dues_ledger.storage.provisioner import SchemaProvisioner
from dues_ledger.storage.strategy import BackingStrategy

logger = logging.getLogger(__name__)


def check_tenant_access(tenant: Tenant | None) -> TenantAccess:
    """
    Status gate, evaluated in order.

    Returns:
        FULL for active tenants, LIMITED for tenants pending approval

    Raises:
        TenantNotFound: No such tenant
        TenantGone: Tenant was soft-deleted
        TenantRejected: Registration was rejected (carries the reason)
        TenantInactive: Any other status (inactive, archived)
    """
    if tenant is None:
        raise TenantNotFound()
    if tenant.is_deleted:
        raise TenantGone.for_tenant(tenant)
    if tenant.status == TenantStatus.REJECTED:
        raise TenantRejected.for_tenant(tenant, reason=tenant.rejection_reason)
    if tenant.status == TenantStatus.PENDING:
        return TenantAccess.LIMITED
    if tenant.status == TenantStatus.ACTIVE:
        return TenantAccess.FULL
    raise TenantInactive.for_tenant(tenant, f"Tenant is {tenant.status.value}")


class TenantContextResolver:
    """
    Resolves requests to tenant contexts.

    Holds the handle pool, the provisioner and the backing strategy; one
    instance lives for the whole process.
    """

    def __init__(
        self,
        pool: HandlePool,
        provisioner: SchemaProvisioner,
        strategy: BackingStrategy,
        settings: Settings,
    ):
        self.pool = pool
        self.provisioner = provisioner
        self.strategy = strategy
        self.settings = settings

    async def resolve(self, principal: Principal, db: AsyncSession) -> TenantContext | None:
        """
        Resolve the tenant context for a principal.

        Args:
            principal: Authenticated principal
            db: Registry session

        Returns:
            TenantContext, or None for system principals

        Raises:
            TenantError: If the tenant is missing, gone, rejected, inactive or
                its storage cannot be reached
        """
        if principal.is_system:
            return None

        if principal.tenant_id is None:
            principal = await self.assign_default_tenant(principal, db)

        tenant = await TenantRepository(db).find_by_id(principal.tenant_id)
        access = check_tenant_access(tenant)
        handle = await self.acquire_handle(tenant)

        context = TenantContext(principal=principal, tenant=tenant, handle=handle, access=access)
        logger.debug(f"Resolved {context!r}")
        return context

    async def acquire_handle(self, tenant: Tenant) -> TenantHandle:
        """
        Live handle on the tenant's provisioned partition.

        On StorageUnavailable the partition is provisioned and acquisition is
        retried exactly once.

        Raises:
            TenantStorageError: On any storage failure or timeout
        """
        storage_id = self.strategy.partition_for(tenant)
        try:
            try:
                handle = await asyncio.wait_for(
                    self.pool.get_handle(storage_id),
                    timeout=self.settings.HANDLE_CONNECT_TIMEOUT,
                )
            except StorageUnavailable as e:
                logger.warning(f"Partition {storage_id} unavailable ({e.reason}); provisioning")
                await self._provision(storage_id, tenant.id)
                return await asyncio.wait_for(
                    self.pool.get_handle(storage_id),
                    timeout=self.settings.HANDLE_CONNECT_TIMEOUT,
                )

            if not self.provisioner.is_memoized(storage_id, tenant.id):
                await self._provision(storage_id, tenant.id)
            return handle
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out acquiring storage for tenant {tenant.slug}")
            raise TenantStorageError.for_tenant(
                tenant, reason=f"Storage for '{storage_id}' timed out"
            ) from e
        except (StorageUnavailable, SQLAlchemyError) as e:
            logger.error(f"Storage for tenant {tenant.slug} unavailable: {e}")
            raise TenantStorageError.for_tenant(tenant, reason=str(e)) from e

    async def _provision(self, storage_id: str, tenant_id: int) -> TenantHandle:
        return await asyncio.wait_for(
            self.provisioner.ensure_provisioned(storage_id, tenant_id),
            timeout=self.settings.PROVISION_TIMEOUT,
        )

    async def find_or_create_default_tenant(self, db: AsyncSession) -> tuple[Tenant, bool]:
        """
        Fetch the default tenant, creating it on first use.

        Concurrent first requests race on the unique slug; the loser re-reads
        the winner's row.

        Returns:
            (tenant, created) where created is True only for the caller that
            inserted the row
        """
        repo = TenantRepository(db)
        slug = self.settings.DEFAULT_TENANT_SLUG
        tenant = await repo.find_by_slug(slug)
        if tenant is not None:
            return tenant, False

        try:
            tenant = await repo.create(
                name=self.settings.DEFAULT_TENANT_NAME,
                slug=slug,
                storage_id=self.settings.DEFAULT_TENANT_STORAGE_ID,
                status=TenantStatus.ACTIVE,
            )
        except ConflictError:
            tenant = await repo.find_by_slug(slug)
            if tenant is None:
                logger.error(
                    f"Cannot create default tenant '{slug}': storage id "
                    f"'{self.settings.DEFAULT_TENANT_STORAGE_ID}' is held by another tenant"
                )
                raise
            logger.info(f"Default tenant '{slug}' was created concurrently")
            return tenant, False

        logger.info(f"Created default tenant '{slug}' (id={tenant.id})")
        return tenant, True

    async def validate_default_tenant(self, db: AsyncSession) -> bool:
        """
        Check that the default tenant's storage id is free or already its own.

        Returns:
            False when another tenant holds the storage id, in which case
            unbound principals cannot be assigned a tenant
        """
        storage_id = self.settings.DEFAULT_TENANT_STORAGE_ID
        holder = await TenantRepository(db).find_by_storage_id(storage_id)
        if holder is not None and holder.slug != self.settings.DEFAULT_TENANT_SLUG:
            logger.error(
                f"Default tenant storage id '{storage_id}' is held by tenant '{holder.slug}'; "
                f"set DEFAULT_TENANT_STORAGE_ID to a free identifier"
            )
            return False
        return True

    async def assign_default_tenant(self, principal: Principal, db: AsyncSession) -> Principal:
        """
        Bind an unbound principal to the default tenant.

        Returns:
            The principal with its persisted tenant_id

        Raises:
            TenantStorageError: If the newly created default tenant cannot be
                provisioned
        """
        tenant, created = await self.find_or_create_default_tenant(db)
        if created:
            storage_id = self.strategy.partition_for(tenant)
            try:
                await self._provision(storage_id, tenant.id)
            except (asyncio.TimeoutError, StorageUnavailable, SQLAlchemyError) as e:
                logger.error(f"Provisioning default tenant {tenant.slug} failed: {e}")
                raise TenantStorageError.for_tenant(tenant, reason=str(e)) from e

        user = await UserRepository(db).assign_tenant(principal.user_id, tenant.id)
        if user is None or user.tenant_id is None:
            raise TenantNotFound("Could not bind principal to a tenant")

        logger.info(f"Assigned user {principal.username} to tenant {user.tenant_id}")
        return dataclasses.replace(principal, tenant_id=user.tenant_id)


def ensure_claim_matches(claim_tenant_id: int | None, bound_tenant_id: int | None) -> int | None:
    """
    Reconcile the token's tenant claim with the persisted binding.

    Raises:
        ForbiddenException: If both are set and differ
    """
    if claim_tenant_id is not None and bound_tenant_id is not None:
        if claim_tenant_id != bound_tenant_id:
            raise ForbiddenException("Token tenant does not match user's tenant")
    return claim_tenant_id if claim_tenant_id is not None else bound_tenant_id

