"""Repository for Tenant registry operations."""

import logging
import re

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.core.exceptions import (
    ConflictError,
    InvalidStateTransition,
    ValidationException,
)
from dues_ledger.models.base import utcnow
from dues_ledger.models.role import TenantStatus
from dues_ledger.models.tenant import Tenant, default_tenant_config

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
STORAGE_ID_PATTERN = re.compile(r"^[a-z0-9_-]+$")

# Allowed lifecycle edges; archived -> active only through restore()
TRANSITIONS: dict[TenantStatus, set[TenantStatus]] = {
    TenantStatus.PENDING: {TenantStatus.ACTIVE, TenantStatus.REJECTED},
    TenantStatus.ACTIVE: {TenantStatus.INACTIVE, TenantStatus.ARCHIVED},
    TenantStatus.INACTIVE: {TenantStatus.ACTIVE, TenantStatus.ARCHIVED},
    TenantStatus.REJECTED: set(),
    TenantStatus.ARCHIVED: set(),
}

IMMUTABLE_FIELDS = {"id", "slug", "storage_id", "status", "deleted_at", "created_at"}


class TenantRepository:
    """Repository for Tenant model operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, tenant_id: int) -> Tenant | None:
        """
        Get tenant by ID, including soft-deleted ones.

        Args:
            tenant_id: Tenant ID

        Returns:
            Tenant object or None if not found
        """
        return await self.db.get(Tenant, tenant_id)

    async def find_by_slug(self, slug: str) -> Tenant | None:
        return await self.db.scalar(select(Tenant).where(Tenant.slug == slug))

    async def find_by_storage_id(self, storage_id: str) -> Tenant | None:
        return await self.db.scalar(select(Tenant).where(Tenant.storage_id == storage_id))

    async def list(
        self, status: TenantStatus | None = None, include_deleted: bool = False
    ) -> list[Tenant]:
        """
        List tenants, newest first.

        Args:
            status: Optional status filter
            include_deleted: Include soft-deleted (archived) tenants

        Returns:
            List of Tenant objects
        """
        stmt = select(Tenant)
        if status is not None:
            stmt = stmt.where(Tenant.status == status)
        if not include_deleted:
            stmt = stmt.where(Tenant.deleted_at.is_(None))
        stmt = stmt.order_by(Tenant.created_at.desc(), Tenant.id.desc())
        return list((await self.db.scalars(stmt)).all())

    async def create(
        self,
        name: str,
        slug: str,
        storage_id: str,
        status: TenantStatus = TenantStatus.PENDING,
        config: dict | None = None,
        contact: dict | None = None,
        created_by: int | None = None,
    ) -> Tenant:
        """
        Create a new tenant.

        Slugs and storage identifiers are never reused, not even those of
        soft-deleted tenants.

        Raises:
            ValidationException: If slug or storage_id is malformed
            ConflictError: If slug or storage_id is already taken
        """
        name = (name or "").strip()
        if not name:
            raise ValidationException("Tenant name is required")
        if not SLUG_PATTERN.match(slug or ""):
            raise ValidationException(
                "Slug can only contain lowercase letters, numbers, and hyphens"
            )
        if not STORAGE_ID_PATTERN.match(storage_id or ""):
            raise ValidationException(
                "Storage id can only contain lowercase letters, numbers, underscores, and hyphens"
            )

        taken = await self.db.scalar(
            select(Tenant).where(or_(Tenant.slug == slug, Tenant.storage_id == storage_id))
        )
        if taken is not None:
            field = "slug" if taken.slug == slug else "storage id"
            raise ConflictError(f"Tenant {field} is already taken")

        tenant = Tenant(
            name=name,
            slug=slug,
            storage_id=storage_id,
            status=status,
            config=config or default_tenant_config(name),
            contact=contact or {},
            created_by=created_by,
        )
        self.db.add(tenant)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost the race against a concurrent create with the same identifiers
            await self.db.rollback()
            raise ConflictError("Tenant slug or storage id is already taken") from e

        await self.db.refresh(tenant)
        logger.info(f"Created tenant {tenant.slug} (id={tenant.id}, status={tenant.status.value})")
        return tenant

    async def update(self, tenant: Tenant, changes: dict) -> Tenant:
        """
        Update mutable tenant fields (name, config, contact).

        Raises:
            ValidationException: On an attempt to change an immutable field
        """
        forbidden = IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise ValidationException(f"Cannot update tenant field(s): {', '.join(sorted(forbidden))}")

        for field, value in changes.items():
            if not hasattr(Tenant, field):
                raise ValidationException(f"Unknown tenant field: {field}")
            setattr(tenant, field, value)

        await self.db.commit()
        await self.db.refresh(tenant)
        return tenant

    async def transition(
        self,
        tenant: Tenant,
        target: TenantStatus,
        *,
        reason: str | None = None,
        actor_id: int | None = None,
    ) -> Tenant:
        """
        Move a tenant along one lifecycle edge.

        Raises:
            InvalidStateTransition: If the edge is not allowed
            ValidationException: If rejecting without a reason
        """
        if target not in TRANSITIONS[tenant.status]:
            raise InvalidStateTransition(tenant.status.value, target.value)

        if target == TenantStatus.REJECTED:
            if not reason or not reason.strip():
                raise ValidationException("Rejection reason is required")
            tenant.rejection_reason = reason.strip()
            tenant.approved_by = actor_id
        elif tenant.status == TenantStatus.PENDING and target == TenantStatus.ACTIVE:
            tenant.approved_at = utcnow()
            tenant.approved_by = actor_id
            tenant.rejection_reason = None

        if target == TenantStatus.ARCHIVED:
            tenant.deleted_at = utcnow()

        previous = tenant.status
        tenant.status = target
        await self.db.commit()
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.slug}: {previous.value} -> {target.value}")
        return tenant

    async def soft_delete(self, tenant: Tenant, actor_id: int | None = None) -> Tenant:
        """Archive the tenant and stamp deleted_at."""
        return await self.transition(tenant, TenantStatus.ARCHIVED, actor_id=actor_id)

    async def restore(self, tenant: Tenant) -> Tenant:
        """
        Bring an archived tenant back to active.

        Raises:
            InvalidStateTransition: If the tenant is not archived
        """
        if tenant.status != TenantStatus.ARCHIVED:
            raise InvalidStateTransition(tenant.status.value, TenantStatus.ACTIVE.value)

        tenant.status = TenantStatus.ACTIVE
        tenant.deleted_at = None
        await self.db.commit()
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.slug}: archived -> active (restored)")
        return tenant

    async def delete(self, tenant: Tenant) -> None:
        """
        Hard-delete a tenant.

        WARNING: Only used to roll back a registration whose provisioning
        failed. Regular removal goes through soft_delete().
        """
        await self.db.delete(tenant)
        await self.db.commit()
        logger.warning(f"Hard-deleted tenant {tenant.slug} (id={tenant.id})")
