"""
Integration tests for the Dues Ledger API.

Complete workflows across the full stack
(routes -> services -> model facade -> tenant partition).
"""

import re
from datetime import date

import pytest


@pytest.fixture(params=["database", "shared"])
def tenancy_strategy(request):
    return request.param


class TestCompleteTenantWorkflow:
    async def test_default_tenant_bookkeeping(self, client, auth_headers):
        """First call binds to the demo tenant; members pay; the dashboard adds up"""
        me = await client.get("/api/tenants/me", headers=auth_headers)
        assert me.status_code == 200
        assert me.json()["tenant"]["slug"] == "demo"
        assert me.json()["access"] == "full"

        jane = (
            await client.post(
                "/api/members/",
                headers=auth_headers,
                json={"name": "Jane Doe", "dues_per_month": 50, "email": "jane@example.com"},
            )
        ).json()
        john = (
            await client.post(
                "/api/members/", headers=auth_headers, json={"name": "John Roe", "dues_per_month": 20}
            )
        ).json()
        assert jane["member_code"] == "DO-00001"
        assert john["member_code"] == "DO-00002"

        payment = await client.post(
            f"/api/members/{jane['id']}/payments",
            headers=auth_headers,
            json={"amount": 125, "paid_on": str(date.today()), "remarks": "cash"},
        )
        assert payment.status_code == 201
        body = payment.json()
        assert body["payment"]["months_covered"] == 2
        assert body["member"]["total_paid"] == 125
        assert re.match(r"^RCT\d{8}-\d{3}$", body["receipt"]["receipt_code"])

        history = await client.get(f"/api/members/{jane['id']}/payments", headers=auth_headers)
        assert [p["amount"] for p in history.json()] == [125]

        types = (await client.get("/api/contribution-types/", headers=auth_headers)).json()
        assert types[0]["name"] == "Dues"
        assert types[0]["is_system"] is True

        fund = await client.post(
            "/api/contribution-types/", headers=auth_headers, json={"name": "Building Fund"}
        )
        assert fund.status_code == 201

        contribution = await client.post(
            "/api/contributions/",
            headers=auth_headers,
            json={"contribution_type_id": fund.json()["id"], "amount": 40, "member_id": john["id"]},
        )
        assert contribution.status_code == 201
        assert contribution.json()["receipt"]["receipt_type"] == "contribution"

        dues_contribution = await client.post(
            "/api/contributions/",
            headers=auth_headers,
            json={"contribution_type_id": types[0]["id"], "amount": 20, "member_id": john["id"]},
        )
        assert dues_contribution.json()["receipt"]["receipt_type"] == "dues"

        dashboard = (await client.get("/api/reports/dashboard", headers=auth_headers)).json()
        assert dashboard["total_members"] == 2
        assert dashboard["total_dues_collected"] == 145
        assert dashboard["total_contributions"] == 40
        assert dashboard["balance"] == 185
        assert dashboard["contributions_by_type"] == {"Building Fund": 40, "Dues": 20}

        receipts = (await client.get("/api/reports/receipts", headers=auth_headers)).json()
        assert len(receipts) == 3
        assert {r["member"]["name"] for r in receipts} == {"Jane Doe", "John Roe"}

        activity = (await client.get("/api/reports/activity", headers=auth_headers)).json()
        assert len(activity) == 5

    async def test_member_crud(self, client, auth_headers):
        created = await client.post(
            "/api/members/", headers=auth_headers, json={"name": "Jane Doe", "dues_per_month": 50}
        )
        member_id = created.json()["id"]

        updated = await client.patch(
            f"/api/members/{member_id}", headers=auth_headers, json={"contact": "555-0199"}
        )
        assert updated.status_code == 200
        assert updated.json()["contact"] == "555-0199"

        fetched = await client.get(f"/api/members/{member_id}", headers=auth_headers)
        assert fetched.json()["name"] == "Jane Doe"

        search = await client.get("/api/members/?search=jane", headers=auth_headers)
        assert search.json()["total"] == 1

        deleted = await client.delete(f"/api/members/{member_id}", headers=auth_headers)
        assert deleted.status_code == 204
        missing = await client.get(f"/api/members/{member_id}", headers=auth_headers)
        assert missing.status_code == 404

    async def test_invalid_payment_amount(self, client, auth_headers):
        member = await client.post(
            "/api/members/", headers=auth_headers, json={"name": "Jane Doe", "dues_per_month": 50}
        )
        response = await client.post(
            f"/api/members/{member.json()['id']}/payments", headers=auth_headers, json={"amount": 0}
        )
        assert response.status_code == 422

    async def test_dues_type_cannot_be_deleted(self, client, auth_headers):
        types = (await client.get("/api/contribution-types/", headers=auth_headers)).json()

        response = await client.delete(f"/api/contribution-types/{types[0]['id']}", headers=auth_headers)

        assert response.status_code == 400


class TestTenantIsolation:
    async def test_tenants_never_see_each_other(self, client, make_headers, tenant_factory):
        acme = await tenant_factory("acme")
        beta = await tenant_factory("beta")
        acme_headers = make_headers("acme-admin", tenant_id=acme.id)
        beta_headers = make_headers("beta-admin", tenant_id=beta.id)

        created = await client.post(
            "/api/members/", headers=acme_headers, json={"name": "Jane Doe", "dues_per_month": 50}
        )
        member_id = created.json()["id"]

        beta_list = await client.get("/api/members/", headers=beta_headers)
        assert beta_list.json()["total"] == 0

        assert (await client.get(f"/api/members/{member_id}", headers=beta_headers)).status_code == 404
        assert (
            await client.patch(f"/api/members/{member_id}", headers=beta_headers, json={"name": "X"})
        ).status_code == 404
        assert (
            await client.post(
                f"/api/members/{member_id}/payments", headers=beta_headers, json={"amount": 50}
            )
        ).status_code == 404

        mine = await client.get(f"/api/members/{member_id}", headers=acme_headers)
        assert mine.json()["name"] == "Jane Doe"
        assert mine.json()["total_paid"] == 0


class TestSubgroups:
    @pytest.fixture
    async def members(self, client, auth_headers):
        created = []
        for name, dues in [("Jane Doe", 50), ("John Roe", 20), ("Ada Lovelace", 10)]:
            response = await client.post(
                "/api/members/", headers=auth_headers, json={"name": name, "dues_per_month": dues}
            )
            created.append(response.json())
        return created

    async def test_subgroup_lifecycle(self, client, auth_headers, members):
        jane, john, ada = members

        created = await client.post(
            "/api/subgroups/", headers=auth_headers, json={"name": " Choir ", "leader_id": jane["id"]}
        )
        assert created.status_code == 201
        choir = created.json()
        assert choir["name"] == "Choir"
        assert choir["leader_id"] == jane["id"]

        leader = await client.get(f"/api/members/{jane['id']}", headers=auth_headers)
        assert leader.json()["subgroup_id"] == choir["id"]

        await client.patch(
            f"/api/members/{john['id']}", headers=auth_headers, json={"subgroup_id": choir["id"]}
        )
        await client.post(f"/api/members/{jane['id']}/payments", headers=auth_headers, json={"amount": 100})
        await client.post(f"/api/members/{john['id']}/payments", headers=auth_headers, json={"amount": 20})
        await client.post(f"/api/members/{ada['id']}/payments", headers=auth_headers, json={"amount": 500})

        detail = (await client.get(f"/api/subgroups/{choir['id']}", headers=auth_headers)).json()
        assert detail["leader"]["name"] == "Jane Doe"
        assert [m["name"] for m in detail["members"]] == ["Jane Doe", "John Roe"]
        assert detail["stats"]["total_collected"] == 120
        assert detail["stats"]["average_per_member"] == 60

        listing = (await client.get("/api/subgroups/", headers=auth_headers)).json()
        assert [g["name"] for g in listing] == ["Choir"]

        board = (await client.get("/api/subgroups/leaderboard", headers=auth_headers)).json()
        assert [(g["name"], g["total_collected"]) for g in board] == [("Unassigned", 500), ("Choir", 120)]

        dashboard = (await client.get("/api/reports/dashboard", headers=auth_headers)).json()
        assert dashboard["subgroups"] == board

        renamed = await client.patch(
            f"/api/subgroups/{choir['id']}",
            headers=auth_headers,
            json={"name": "Senior Choir", "leader_id": ada["id"]},
        )
        assert renamed.json()["name"] == "Senior Choir"
        assert renamed.json()["leader_id"] == ada["id"]
        moved = await client.get(f"/api/members/{ada['id']}", headers=auth_headers)
        assert moved.json()["subgroup_id"] == choir["id"]

        deleted = await client.delete(f"/api/subgroups/{choir['id']}", headers=auth_headers)
        assert deleted.status_code == 204
        assert (await client.get(f"/api/subgroups/{choir['id']}", headers=auth_headers)).status_code == 404
        remaining = (await client.get("/api/members/", headers=auth_headers)).json()["members"]
        assert {m["subgroup_id"] for m in remaining} == {None}

    async def test_leader_must_be_a_member(self, client, auth_headers):
        response = await client.post(
            "/api/subgroups/", headers=auth_headers, json={"name": "Choir", "leader_id": 999}
        )
        assert response.status_code == 400

    async def test_subgroups_are_tenant_scoped(self, client, make_headers, tenant_factory):
        acme = make_headers("acme-admin", tenant_id=(await tenant_factory("acme")).id)
        beta = make_headers("beta-admin", tenant_id=(await tenant_factory("beta")).id)
        leader = await client.post(
            "/api/members/", headers=acme, json={"name": "Jane Doe", "dues_per_month": 50}
        )

        foreign_leader = await client.post(
            "/api/subgroups/", headers=beta, json={"name": "Choir", "leader_id": leader.json()["id"]}
        )
        assert foreign_leader.status_code == 400

        choir = await client.post(
            "/api/subgroups/", headers=acme, json={"name": "Choir", "leader_id": leader.json()["id"]}
        )
        assert (await client.get(f"/api/subgroups/{choir.json()['id']}", headers=beta)).status_code == 404
        assert (await client.get("/api/subgroups/", headers=beta)).json() == []


class TestExpenditures:
    async def test_expenditure_lifecycle(self, client, auth_headers):
        member = (
            await client.post(
                "/api/members/", headers=auth_headers, json={"name": "Jane Doe", "dues_per_month": 50}
            )
        ).json()
        await client.post(f"/api/members/{member['id']}/payments", headers=auth_headers, json={"amount": 500})

        hall = await client.post(
            "/api/expenditures/",
            headers=auth_headers,
            json={"title": "Hall rent", "amount": 120, "category": "Rent", "spent_on": "2024-03-01"},
        )
        assert hall.status_code == 201
        assert hall.json()["expense_code"] == "EXP-00001"
        assert hall.json()["spent_by"] == "test-user-123"

        snacks = await client.post(
            "/api/expenditures/",
            headers=auth_headers,
            json={"title": "Snacks", "amount": 30.5, "spent_on": "2024-05-10"},
        )
        assert snacks.json()["expense_code"] == "EXP-00002"

        listing = (await client.get("/api/expenditures/", headers=auth_headers)).json()
        assert [e["title"] for e in listing] == ["Snacks", "Hall rent"]

        march = await client.get(
            "/api/expenditures/?start_date=2024-03-01&end_date=2024-03-31", headers=auth_headers
        )
        assert [e["title"] for e in march.json()] == ["Hall rent"]
        by_category = await client.get("/api/expenditures/?category=Rent", headers=auth_headers)
        assert len(by_category.json()) == 1

        summary = (await client.get("/api/expenditures/summary", headers=auth_headers)).json()
        assert summary == {
            "total": 150.5,
            "count": 2,
            "by_category": {"Rent": 120, "Uncategorized": 30.5},
        }

        dashboard = (await client.get("/api/reports/dashboard", headers=auth_headers)).json()
        assert dashboard["total_expenditure"] == 150.5
        assert dashboard["expenditure_by_category"] == {"Rent": 120, "Uncategorized": 30.5}
        assert dashboard["balance"] == 349.5

        updated = await client.patch(
            f"/api/expenditures/{hall.json()['id']}", headers=auth_headers, json={"amount": 100}
        )
        assert updated.status_code == 200
        assert updated.json()["amount"] == 100
        assert updated.json()["title"] == "Hall rent"

        deleted = await client.delete(f"/api/expenditures/{snacks.json()['id']}", headers=auth_headers)
        assert deleted.status_code == 204
        missing = await client.get(f"/api/expenditures/{snacks.json()['id']}", headers=auth_headers)
        assert missing.status_code == 404

        activity = (await client.get("/api/reports/activity", headers=auth_headers)).json()
        assert any("Deleted expenditure EXP-00002" in entry["action"] for entry in activity)

    async def test_invalid_amount_and_range(self, client, auth_headers):
        response = await client.post(
            "/api/expenditures/", headers=auth_headers, json={"title": "Hall", "amount": 0}
        )
        assert response.status_code == 422

        response = await client.get(
            "/api/expenditures/?start_date=2024-05-01&end_date=2024-03-01", headers=auth_headers
        )
        assert response.status_code == 400

    async def test_required_fields_cannot_be_cleared(self, client, auth_headers):
        created = await client.post(
            "/api/expenditures/", headers=auth_headers, json={"title": "Hall", "amount": 10}
        )
        response = await client.patch(
            f"/api/expenditures/{created.json()['id']}", headers=auth_headers, json={"title": None}
        )
        assert response.status_code == 400
