import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from dues_ledger.core.exceptions import (
    ConflictError,
    StorageUnavailable,
    TenantGone,
    TenantInactive,
    TenantNotFound,
    TenantRejected,
    TenantStorageError,
)
from dues_ledger.models.role import TenantAccess, TenantStatus, UserRole
from dues_ledger.models.tenant_context import Principal
from dues_ledger.repositories.tenant_repository import TenantRepository
from dues_ledger.repositories.user_repository import UserRepository
from dues_ledger.services.tenant_context_service import check_tenant_access


def _tenant(status: TenantStatus, deleted: bool = False, reason: str | None = None):
    return SimpleNamespace(
        id=1,
        name="Acme",
        slug="acme",
        status=status,
        rejection_reason=reason,
        deleted_at=datetime.now(timezone.utc) if deleted else None,
        is_deleted=deleted,
    )


class TestCheckTenantAccess:
    """The status gate, evaluated in order"""

    def test_missing_tenant(self):
        with pytest.raises(TenantNotFound):
            check_tenant_access(None)

    def test_deleted_wins_over_status(self):
        with pytest.raises(TenantGone):
            check_tenant_access(_tenant(TenantStatus.ACTIVE, deleted=True))

    def test_rejected_carries_reason(self):
        with pytest.raises(TenantRejected) as exc_info:
            check_tenant_access(_tenant(TenantStatus.REJECTED, reason="Incomplete documents"))
        assert exc_info.value.reason == "Incomplete documents"
        assert exc_info.value.to_dict()["tenant_slug"] == "acme"

    def test_pending_is_limited(self):
        assert check_tenant_access(_tenant(TenantStatus.PENDING)) == TenantAccess.LIMITED

    def test_active_is_full(self):
        assert check_tenant_access(_tenant(TenantStatus.ACTIVE)) == TenantAccess.FULL

    @pytest.mark.parametrize("status", [TenantStatus.INACTIVE, TenantStatus.ARCHIVED])
    def test_other_statuses_inactive(self, status):
        with pytest.raises(TenantInactive):
            check_tenant_access(_tenant(status))


class TestResolve:
    async def test_system_principal_gets_no_context(self, resolver, registry_db):
        user = await UserRepository(registry_db).create("operator", UserRole.SYSTEM)
        principal = Principal(user_id=user.id, username="operator", role=UserRole.SYSTEM)

        assert await resolver.resolve(principal, registry_db) is None

    async def test_active_tenant_resolves_full(self, tenant_factory, context_factory):
        tenant = await tenant_factory("acme")
        context = await context_factory(tenant)

        assert context.tenant_id == tenant.id
        assert context.access == TenantAccess.FULL
        assert context.handle.healthy
        assert context.handle.storage_id == "acme"

    async def test_pending_tenant_resolves_limited(self, tenant_factory, context_factory):
        tenant = await tenant_factory("acme", status=TenantStatus.PENDING)
        context = await context_factory(tenant)

        assert context.limited
        assert not context.can_write()

    async def test_unknown_tenant_claim(self, resolver, registry_db):
        user = await UserRepository(registry_db).create("ghost", UserRole.ADMIN)
        principal = Principal(user_id=user.id, username="ghost", role=UserRole.ADMIN, tenant_id=999)

        with pytest.raises(TenantNotFound):
            await resolver.resolve(principal, registry_db)

    async def test_rejected_tenant(self, tenant_factory, context_factory, registry_db):
        tenant = await tenant_factory("acme", status=TenantStatus.PENDING)
        repo = TenantRepository(registry_db)
        await repo.transition(await repo.find_by_id(tenant.id), TenantStatus.REJECTED, reason="Spam")

        with pytest.raises(TenantRejected) as exc_info:
            await context_factory(tenant)
        assert exc_info.value.reason == "Spam"

    async def test_soft_deleted_tenant(self, tenant_factory, context_factory, registry_db):
        tenant = await tenant_factory("acme")
        repo = TenantRepository(registry_db)
        await repo.soft_delete(await repo.find_by_id(tenant.id))

        with pytest.raises(TenantGone):
            await context_factory(tenant)

    async def test_inactive_tenant(self, tenant_factory, context_factory, registry_db):
        tenant = await tenant_factory("acme")
        repo = TenantRepository(registry_db)
        await repo.transition(await repo.find_by_id(tenant.id), TenantStatus.INACTIVE)

        with pytest.raises(TenantInactive):
            await context_factory(tenant)


class TestDefaultTenant:
    async def test_unbound_principal_is_bound(self, resolver, registry_db, test_settings):
        user = await UserRepository(registry_db).create("newcomer", UserRole.ADMIN)
        principal = Principal(user_id=user.id, username="newcomer", role=UserRole.ADMIN)

        context = await resolver.resolve(principal, registry_db)

        assert context.tenant.slug == test_settings.DEFAULT_TENANT_SLUG
        assert context.principal.tenant_id == context.tenant_id
        stored = await UserRepository(registry_db).get_by_id(user.id)
        assert stored.tenant_id == context.tenant_id

    async def test_concurrent_first_requests_share_one_default(self, app, test_settings):
        """Racing unbound principals converge on a single default tenant"""
        sessionmaker = app.state.registry_sessionmaker
        resolver = app.state.resolver

        async with sessionmaker() as db:
            users = [
                await UserRepository(db).create(f"racer-{i}", UserRole.ADMIN) for i in range(5)
            ]

        async def first_request(user):
            async with sessionmaker() as db:
                principal = Principal(user_id=user.id, username=user.username, role=UserRole.ADMIN)
                return await resolver.resolve(principal, db)

        contexts = await asyncio.gather(*(first_request(u) for u in users))

        assert len({c.tenant_id for c in contexts}) == 1
        async with sessionmaker() as db:
            tenants = await TenantRepository(db).list(include_deleted=True)
            assert [t.slug for t in tenants] == [test_settings.DEFAULT_TENANT_SLUG]
            for user in users:
                assert (await UserRepository(db).get_by_id(user.id)).tenant_id == contexts[0].tenant_id

    async def test_existing_binding_is_not_overwritten(self, resolver, registry_db, tenant_factory):
        tenant = await tenant_factory("acme")
        users = UserRepository(registry_db)
        user = await users.create("bound", UserRole.ADMIN, tenant_id=tenant.id)

        assigned = await users.assign_tenant(user.id, tenant.id + 100)

        assert assigned.tenant_id == tenant.id

    async def test_default_storage_id_held_by_another_tenant(self, resolver, registry_db, test_settings):
        """Unbound principals cannot be placed when the default storage id is taken"""
        await TenantRepository(registry_db).create(
            name="Squatter",
            slug="squatter",
            storage_id=test_settings.DEFAULT_TENANT_STORAGE_ID,
            status=TenantStatus.ACTIVE,
        )
        user = await UserRepository(registry_db).create("newcomer", UserRole.ADMIN)
        principal = Principal(user_id=user.id, username="newcomer", role=UserRole.ADMIN)

        assert await resolver.validate_default_tenant(registry_db) is False
        with pytest.raises(ConflictError):
            await resolver.resolve(principal, registry_db)

    async def test_default_storage_id_free(self, resolver, registry_db):
        assert await resolver.validate_default_tenant(registry_db) is True


class TestAcquireHandle:
    async def test_missing_partition_is_provisioned(self, resolver, tenant_factory, tmp_path):
        """A tenant whose database does not exist yet is provisioned on first use"""
        tenant = await tenant_factory("fresh")
        assert not (tmp_path / "tenants" / "fresh.db").exists()

        handle = await resolver.acquire_handle(tenant)

        assert handle.healthy
        assert (tmp_path / "tenants" / "fresh.db").exists()
        assert await resolver.provisioner.is_provisioned(handle)

    async def test_unreachable_storage_is_tenant_storage_error(
        self, resolver, tenant_factory, monkeypatch
    ):
        """If provisioning cannot create the partition, the error is typed"""
        tenant = await tenant_factory("doomed")

        async def refuse(storage_id):
            raise StorageUnavailable(storage_id, "disk full")

        monkeypatch.setattr(resolver.strategy, "create_partition", refuse)

        with pytest.raises(TenantStorageError) as exc_info:
            await resolver.acquire_handle(tenant)
        assert exc_info.value.tenant_slug == "doomed"
        assert resolver.pool.list_active() == []

    async def test_provision_timeout_is_tenant_storage_error(
        self, resolver, tenant_factory, monkeypatch
    ):
        tenant = await tenant_factory("slow")
        resolver.settings = resolver.settings.model_copy(update={"PROVISION_TIMEOUT": 0.05})

        async def stall(storage_id, tenant_id):
            await asyncio.sleep(5)

        monkeypatch.setattr(resolver.provisioner, "ensure_provisioned", stall)

        with pytest.raises(TenantStorageError):
            await resolver.acquire_handle(tenant)

    async def test_database_error_while_seeding_is_tenant_storage_error(
        self, resolver, tenant_factory, monkeypatch
    ):
        """A locked or broken partition during provisioning is a typed storage error"""
        tenant = await tenant_factory("locked")

        async def locked(handle, tenant_id):
            raise OperationalError("INSERT INTO contribution_types", {}, Exception("database is locked"))

        monkeypatch.setattr(resolver.provisioner, "_seed", locked)

        with pytest.raises(TenantStorageError) as exc_info:
            await resolver.acquire_handle(tenant)
        assert exc_info.value.tenant_slug == "locked"
        assert "database is locked" in exc_info.value.reason
        assert not resolver.provisioner.is_memoized("locked", tenant.id)

    async def test_os_error_creating_partition_is_tenant_storage_error(
        self, resolver, tenant_factory, monkeypatch
    ):
        tenant = await tenant_factory("readonly")

        async def read_only(storage_id):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(resolver.strategy, "create_partition", read_only)

        with pytest.raises(TenantStorageError):
            await resolver.acquire_handle(tenant)
