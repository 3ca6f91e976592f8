import pytest
from sqlalchemy.exc import OperationalError

from dues_ledger.core.exceptions import StorageUnavailable
from dues_ledger.repositories.user_repository import UserRepository


def _registration(slug: str = "acme", admin: str = "acme-admin", **overrides) -> dict:
    payload = {
        "name": "Acme Ventures",
        "slug": slug,
        "admin_username": admin,
        "admin_email": f"{admin}@example.com",
        "contact": {"email": "office@acme.example", "phone": "555-0100"},
        "branding": {"primary_color": "#112233"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def register(client):
    async def _register(**kwargs):
        return await client.post("/api/tenants/register", json=_registration(**kwargs))

    return _register


@pytest.fixture
def acme_admin(make_headers):
    return make_headers("acme-admin", role="super")


class TestRegistration:
    """Tests for POST /api/tenants/register"""

    async def test_register_creates_pending_tenant(self, register, tmp_path):
        response = await register()

        assert response.status_code == 201
        data = response.json()
        assert data["tenant"]["status"] == "pending"
        assert data["tenant"]["storage_id"] == "acme"
        assert data["tenant"]["config"]["branding"]["primary_color"] == "#112233"
        assert data["tenant"]["contact"]["phone"] == "555-0100"
        assert data["admin_username"] == "acme-admin"
        assert (tmp_path / "tenants" / "acme.db").exists()

    async def test_custom_storage_id(self, register):
        response = await register(storage_id="acme_2024")
        assert response.json()["tenant"]["storage_id"] == "acme_2024"

    async def test_duplicate_slug(self, register):
        await register()
        response = await register(admin="someone-else")
        assert response.status_code == 409

    async def test_duplicate_admin_username(self, register):
        await register()
        response = await register(slug="acme-two")
        assert response.status_code == 409

    @pytest.mark.parametrize("slug", ["Acme", "acme corp", "acme_corp"])
    async def test_invalid_slug(self, register, slug):
        response = await register(slug=slug)
        assert response.status_code == 422

    async def test_failed_provisioning_rolls_back(self, app, register, monkeypatch, system_headers, client):
        """A tenant whose partition cannot be provisioned is removed again"""

        async def unavailable(storage_id, tenant_id):
            raise StorageUnavailable(storage_id, "disk full")

        monkeypatch.setattr(app.state.resolver.provisioner, "ensure_provisioned", unavailable)

        response = await register()

        assert response.status_code == 503
        assert response.json()["kind"] == "tenant_storage_error"
        tenants = await client.get("/api/tenants?include_deleted=true", headers=system_headers)
        assert tenants.json() == []

        monkeypatch.undo()
        retry = await register()
        assert retry.status_code == 201

    async def test_database_error_while_seeding_rolls_back(
        self, app, register, monkeypatch, system_headers, client
    ):
        """A locked partition during seeding leaves neither a tenant row nor an open handle"""
        provisioner = app.state.resolver.provisioner

        async def locked(handle, tenant_id):
            raise OperationalError("INSERT INTO contribution_types", {}, Exception("database is locked"))

        monkeypatch.setattr(provisioner, "_seed", locked)

        response = await register()

        assert response.status_code == 503
        assert response.json()["kind"] == "tenant_storage_error"
        assert "database is locked" in response.json()["reason"]
        tenants = await client.get("/api/tenants?include_deleted=true", headers=system_headers)
        assert tenants.json() == []
        assert "acme" not in app.state.pool.list_active()
        assert not any(key[0] == "acme" for key in provisioner._provisioned)

        monkeypatch.undo()
        retry = await register()
        assert retry.status_code == 201
        assert provisioner.is_memoized("acme", retry.json()["tenant"]["id"])

    async def test_admin_creation_failure_rolls_back(self, app, register, monkeypatch, system_headers, client):
        """The partition is released when the admin principal cannot be stored"""

        async def refuse(self, **kwargs):
            raise OperationalError("INSERT INTO users", {}, Exception("disk I/O error"))

        monkeypatch.setattr(UserRepository, "create", refuse)

        response = await register()
        monkeypatch.undo()

        assert response.status_code == 503
        tenants = await client.get("/api/tenants?include_deleted=true", headers=system_headers)
        assert tenants.json() == []
        assert "acme" not in app.state.pool.list_active()


class TestApprovalFlow:
    async def test_acme_approval_scenario(self, client, register, acme_admin, system_headers):
        """Pending tenants read but cannot write until a system admin approves them"""
        tenant_id = (await register()).json()["tenant"]["id"]

        me = await client.get("/api/tenants/me", headers=acme_admin)
        assert me.status_code == 200
        assert me.json()["access"] == "limited"
        assert me.json()["can_write"] is False

        listing = await client.get("/api/members/", headers=acme_admin)
        assert listing.status_code == 200
        assert listing.json()["total"] == 0

        blocked = await client.post(
            "/api/members/", headers=acme_admin, json={"name": "Jane Doe", "dues_per_month": 50}
        )
        assert blocked.status_code == 403
        assert blocked.json()["kind"] == "tenant_read_only"

        approved = await client.post(f"/api/tenants/{tenant_id}/approve", headers=system_headers)
        assert approved.status_code == 200
        assert approved.json()["status"] == "active"
        assert approved.json()["approved_at"] is not None

        me = await client.get("/api/tenants/me", headers=acme_admin)
        assert me.json()["access"] == "full"

        created = await client.post(
            "/api/members/", headers=acme_admin, json={"name": "Jane Doe", "dues_per_month": 50}
        )
        assert created.status_code == 201
        assert created.json()["member_code"] == "AV-00001"

    async def test_rejection_scenario(self, client, register, acme_admin, system_headers):
        tenant_id = (await register()).json()["tenant"]["id"]

        rejected = await client.post(
            f"/api/tenants/{tenant_id}/reject",
            headers=system_headers,
            json={"reason": "Incomplete documents"},
        )
        assert rejected.status_code == 200
        assert rejected.json()["rejection_reason"] == "Incomplete documents"

        response = await client.get("/api/tenants/me", headers=acme_admin)
        assert response.status_code == 403
        body = response.json()
        assert body["kind"] == "tenant_rejected"
        assert body["reason"] == "Incomplete documents"
        assert body["tenant_name"] == "Acme Ventures"

    async def test_reject_requires_reason(self, client, register, system_headers):
        tenant_id = (await register()).json()["tenant"]["id"]
        response = await client.post(
            f"/api/tenants/{tenant_id}/reject", headers=system_headers, json={"reason": ""}
        )
        assert response.status_code == 422

    async def test_tenant_admin_cannot_approve(self, client, register, acme_admin):
        tenant_id = (await register()).json()["tenant"]["id"]
        response = await client.post(f"/api/tenants/{tenant_id}/approve", headers=acme_admin)
        assert response.status_code == 403

    async def test_invalid_transition(self, client, register, system_headers):
        tenant_id = (await register()).json()["tenant"]["id"]

        response = await client.post(f"/api/tenants/{tenant_id}/deactivate", headers=system_headers)

        assert response.status_code == 409
        assert response.json()["current"] == "pending"
        assert response.json()["target"] == "inactive"


class TestAdministration:
    @pytest.fixture
    async def acme_id(self, client, register, system_headers):
        tenant_id = (await register()).json()["tenant"]["id"]
        await client.post(f"/api/tenants/{tenant_id}/approve", headers=system_headers)
        return tenant_id

    async def test_list_and_filter(self, client, register, acme_id, system_headers):
        await register(slug="beta", admin="beta-admin")

        everything = await client.get("/api/tenants", headers=system_headers)
        pending = await client.get("/api/tenants?status=pending", headers=system_headers)

        assert {t["slug"] for t in everything.json()} == {"acme", "beta"}
        assert [t["slug"] for t in pending.json()] == ["beta"]

    async def test_get_missing_tenant(self, client, system_headers):
        response = await client.get("/api/tenants/999", headers=system_headers)
        assert response.status_code == 404

    async def test_update_merges_contact(self, client, acme_id, system_headers):
        response = await client.patch(
            f"/api/tenants/{acme_id}",
            headers=system_headers,
            json={"name": "Acme Holdings", "contact": {"address": "1 Main St"}},
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Acme Holdings"
        assert response.json()["contact"]["address"] == "1 Main St"
        assert response.json()["contact"]["phone"] == "555-0100"

    async def test_slug_is_immutable(self, client, acme_id, system_headers):
        response = await client.patch(
            f"/api/tenants/{acme_id}", headers=system_headers, json={"slug": "acme-2"}
        )
        assert response.status_code == 422

    async def test_deactivate_blocks_access(self, client, acme_id, acme_admin, system_headers):
        await client.post(f"/api/tenants/{acme_id}/deactivate", headers=system_headers)

        response = await client.get("/api/tenants/me", headers=acme_admin)
        assert response.status_code == 403
        assert response.json()["kind"] == "tenant_inactive"

        await client.post(f"/api/tenants/{acme_id}/activate", headers=system_headers)
        assert (await client.get("/api/tenants/me", headers=acme_admin)).status_code == 200

    async def test_archive_and_restore(self, client, acme_id, acme_admin, system_headers, app):
        await client.post(
            "/api/members/", headers=acme_admin, json={"name": "Jane Doe", "dues_per_month": 50}
        )

        archived = await client.delete(f"/api/tenants/{acme_id}", headers=system_headers)
        assert archived.status_code == 200
        assert archived.json()["status"] == "archived"
        assert archived.json()["deleted_at"] is not None
        assert "acme" not in app.state.pool.list_active()

        gone = await client.get("/api/members/", headers=acme_admin)
        assert gone.status_code == 410
        assert gone.json()["kind"] == "tenant_gone"

        restored = await client.post(f"/api/tenants/{acme_id}/restore", headers=system_headers)
        assert restored.status_code == 200
        assert restored.json()["status"] == "active"

        members = await client.get("/api/members/", headers=acme_admin)
        assert members.status_code == 200
        assert [m["name"] for m in members.json()["members"]] == ["Jane Doe"]

    async def test_archived_slug_not_reusable(self, client, register, acme_id, system_headers):
        await client.delete(f"/api/tenants/{acme_id}", headers=system_headers)

        response = await register(admin="new-admin")

        assert response.status_code == 409
