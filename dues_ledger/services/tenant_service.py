import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.core.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    StorageUnavailable,
    TenantStorageError,
)
from dues_ledger.models.role import TenantStatus, UserRole
from dues_ledger.models.tenant import Tenant, default_tenant_config
from dues_ledger.models.tenant_context import Principal
from dues_ledger.models.user import User
from dues_ledger.repositories.tenant_repository import TenantRepository
from dues_ledger.repositories.user_repository import UserRepository
from dues_ledger.schemas.tenant_schemas import TenantRegister, TenantUpdate
from dues_ledger.services.tenant_context_service import TenantContextResolver

logger = logging.getLogger(__name__)


class TenantService:
    """Service layer for tenant registration and lifecycle administration"""

    def __init__(self, db: AsyncSession, resolver: TenantContextResolver):
        self.db = db
        self.resolver = resolver
        self.tenant_repo = TenantRepository(db)
        self.user_repo = UserRepository(db)

    @staticmethod
    def _require_system(principal: Principal) -> None:
        if not principal.is_system:
            raise ForbiddenException("System administrator access required")

    async def register_tenant(self, data: TenantRegister) -> tuple[Tenant, User]:
        """
        Self-registration of a new organization.

        Creates the tenant in PENDING status, provisions its partition and
        creates its admin principal. If provisioning or the admin creation
        fails, the tenant row is deleted again so the slug can be retried.

        Args:
            data: Registration payload

        Returns:
            (tenant, admin user)

        Raises:
            ConflictError: If slug, storage id or admin username is taken
            TenantStorageError: If the partition cannot be provisioned
        """
        if await self.user_repo.get_by_username(data.admin_username):
            raise ConflictError("Admin username is already registered")

        branding = data.branding.model_dump() if data.branding else None
        tenant = await self.tenant_repo.create(
            name=data.name,
            slug=data.slug,
            storage_id=data.storage_id or data.slug,
            status=TenantStatus.PENDING,
            config=default_tenant_config(data.name, branding),
            contact=data.contact.model_dump() if data.contact else {},
        )

        storage_id = self.resolver.strategy.partition_for(tenant)
        try:
            await asyncio.wait_for(
                self.resolver.provisioner.ensure_provisioned(storage_id, tenant.id),
                timeout=self.resolver.settings.PROVISION_TIMEOUT,
            )
            admin = await self.user_repo.create(
                username=data.admin_username,
                role=UserRole.SUPER,
                tenant_id=tenant.id,
                email=data.admin_email,
            )
        except Exception as e:
            logger.error(f"Registration of tenant {tenant.slug} failed, rolling back: {e!r}")
            error = TenantStorageError.for_tenant(
                tenant, reason=str(e) or f"Provisioning '{storage_id}' timed out"
            )
            await self._discard_registration(tenant.id, storage_id)
            if isinstance(e, (asyncio.TimeoutError, StorageUnavailable, SQLAlchemyError, OSError)):
                raise error from e
            raise

        logger.info(f"Registered tenant {tenant.slug} (pending approval), admin {admin.username}")
        return tenant, admin

    async def _discard_registration(self, tenant_id: int, storage_id: str) -> None:
        """Remove the tenant row of a failed registration and release its storage state."""
        await self.db.rollback()
        tenant = await self.tenant_repo.find_by_id(tenant_id)
        if tenant is not None:
            await self.tenant_repo.delete(tenant)

        if self.resolver.strategy.name == "database":
            await self.resolver.pool.close_handle(storage_id)
            self.resolver.provisioner.forget(storage_id)
        else:
            self.resolver.provisioner.forget(storage_id, tenant_id)

    async def list_tenants(
        self, principal: Principal, status: TenantStatus | None = None, include_deleted: bool = False
    ) -> list[Tenant]:
        self._require_system(principal)
        return await self.tenant_repo.list(status=status, include_deleted=include_deleted)

    async def get_tenant(self, principal: Principal, tenant_id: int) -> Tenant:
        """
        Get any tenant by ID (system only).

        Raises:
            ForbiddenException: If principal is not a system administrator
            NotFoundException: If tenant does not exist
        """
        self._require_system(principal)
        tenant = await self.tenant_repo.find_by_id(tenant_id)
        if not tenant:
            raise NotFoundException("Tenant not found")
        return tenant

    async def update_tenant(
        self, principal: Principal, tenant_id: int, tenant_update: TenantUpdate
    ) -> Tenant:
        """Update name, contact or config of a tenant (system only)."""
        tenant = await self.get_tenant(principal, tenant_id)
        changes = tenant_update.model_dump(exclude_unset=True)
        if "contact" in changes and changes["contact"] is not None:
            changes["contact"] = {**(tenant.contact or {}), **changes["contact"]}
        if "config" in changes and changes["config"] is not None:
            changes["config"] = {**(tenant.config or {}), **changes["config"]}
        return await self.tenant_repo.update(tenant, changes)

    async def approve(self, principal: Principal, tenant_id: int) -> Tenant:
        tenant = await self.get_tenant(principal, tenant_id)
        return await self.tenant_repo.transition(
            tenant, TenantStatus.ACTIVE, actor_id=principal.user_id
        )

    async def reject(self, principal: Principal, tenant_id: int, reason: str) -> Tenant:
        tenant = await self.get_tenant(principal, tenant_id)
        return await self.tenant_repo.transition(
            tenant, TenantStatus.REJECTED, reason=reason, actor_id=principal.user_id
        )

    async def deactivate(self, principal: Principal, tenant_id: int) -> Tenant:
        tenant = await self.get_tenant(principal, tenant_id)
        return await self.tenant_repo.transition(tenant, TenantStatus.INACTIVE)

    async def activate(self, principal: Principal, tenant_id: int) -> Tenant:
        """Re-activate an inactive tenant (pending tenants go through approve)."""
        tenant = await self.get_tenant(principal, tenant_id)
        if tenant.status == TenantStatus.PENDING:
            return await self.approve(principal, tenant_id)
        return await self.tenant_repo.transition(tenant, TenantStatus.ACTIVE)

    async def archive(self, principal: Principal, tenant_id: int) -> Tenant:
        """
        Soft-delete a tenant and release its storage handle.

        The shared partition is left open since other tenants still use it.
        """
        tenant = await self.get_tenant(principal, tenant_id)
        tenant = await self.tenant_repo.soft_delete(tenant, actor_id=principal.user_id)

        if self.resolver.strategy.name == "database":
            await self.resolver.pool.close_handle(tenant.storage_id)
            self.resolver.provisioner.forget(tenant.storage_id)
        return tenant

    async def restore(self, principal: Principal, tenant_id: int) -> Tenant:
        tenant = await self.get_tenant(principal, tenant_id)
        return await self.tenant_repo.restore(tenant)
