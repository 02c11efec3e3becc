"""管理员与账户/账本 API 测试"""

from atelier.core.models import AccountRole, Actor, FreelancerStatus

STATIC_AD = {"kind": "static-ads", "title": "Launch banner", "dimensions": ["1080x1080"]}


async def _in_review(client, accounts, fund, as_actor) -> str:
    await fund(accounts["client"].id, 100)
    resp = await client.post(
        "/api/tasks",
        json={"category": "static-ads", "requirements": STATIC_AD},
        headers=as_actor(accounts["client"]),
    )
    task_id = resp.json()["task"]["task_id"]
    designer_h = as_actor(accounts["freelancer"])
    await client.post(f"/api/tasks/{task_id}/claim", headers=designer_h)
    await client.post(f"/api/tasks/{task_id}/start", headers=designer_h)
    await client.post(
        f"/api/tasks/{task_id}/submit", json={"deliverables": ["v1.png"]}, headers=designer_h
    )
    return task_id


class TestAdminRoutes:
    """/api/admin"""

    async def test_force_transition(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/force",
            json={"to_status": "CANCELLED", "reason": "Duplicate order"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "CANCELLED"
        assert resp.json()["balance"] == 100

    async def test_force_requires_admin(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/force",
            json={"to_status": "COMPLETED", "reason": "mine"},
            headers=as_actor(accounts["client"]),
        )
        assert resp.status_code == 409

    async def test_force_invalid_status(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/force",
            json={"to_status": "ARCHIVED", "reason": "x"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 400

    async def test_escalate_then_resolve(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        await client.post(
            f"/api/tasks/{task_id}/escalate",
            json={"reason": "Scope dispute"},
            headers=as_actor(accounts["client"]),
        )
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/resolve",
            json={"reason": "Agreed on scope"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "IN_REVIEW"
        assert resp.json()["task"]["freelancer_id"] == accounts["freelancer"].id

    async def test_escalate_then_reject(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        await client.post(
            f"/api/tasks/{task_id}/escalate",
            json={"reason": "Scope dispute"},
            headers=as_actor(accounts["client"]),
        )
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/resolve",
            json={"outcome": "reject", "feedback": "Missing the 9:16 variant"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "REVISION_REQUESTED"
        assert resp.json()["task"]["revisions_used"] == 1

    async def test_reject_without_feedback(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        await client.post(
            f"/api/tasks/{task_id}/escalate",
            json={"reason": "Scope dispute"},
            headers=as_actor(accounts["client"]),
        )
        resp = await client.post(
            f"/api/admin/tasks/{task_id}/resolve",
            json={"outcome": "reject"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 400

    async def test_purge(self, client, accounts, fund, as_actor):
        task_id = await _in_review(client, accounts, fund, as_actor)
        resp = await client.post(
            "/api/admin/tasks/purge",
            json={"task_ids": [task_id]},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.json() == {"purged": [task_id]}
        detail = await client.get(f"/api/tasks/{task_id}", headers=as_actor(accounts["admin"]))
        assert detail.status_code == 404

    async def test_adjust_credits(self, client, accounts, as_actor):
        resp = await client.post(
            "/api/admin/credits",
            json={"account_id": "client-1", "amount": -5, "reason": "Chargeback"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.json() == {"account_id": "client-1", "balance": -5}

    async def test_freelancer_status(self, client, store_group, accounts, as_actor):
        resp = await client.post(
            "/api/admin/freelancers/designer-2/status",
            json={"status": "SUSPENDED"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 200
        profile = await store_group.account_store.get_freelancer_profile("designer-2")
        assert profile.status == FreelancerStatus.SUSPENDED

    async def test_settings_roundtrip(self, client, accounts, as_actor):
        admin_h = as_actor(accounts["admin"])
        resp = await client.put(
            "/api/admin/settings/low_balance_threshold", json={"value": 50}, headers=admin_h
        )
        assert resp.json()["low_balance_threshold"] == 50
        resp = await client.get("/api/admin/settings", headers=admin_h)
        assert resp.json()["low_balance_threshold"] == 50

    async def test_unknown_setting(self, client, accounts, as_actor):
        resp = await client.put(
            "/api/admin/settings/theme",
            json={"value": "dark"},
            headers=as_actor(accounts["admin"]),
        )
        assert resp.status_code == 400
        assert "default_max_revisions" in resp.json()["error"]["details"]["allowed"]


class TestAccountRoutes:
    """/api/accounts 与设计师可接单状态"""

    async def test_self_sync(self, client, as_actor):
        newcomer = Actor(id="client-9", role=AccountRole.CLIENT)
        resp = await client.post(
            "/api/accounts",
            json={"account_id": "client-9", "role": "client", "email": "c9@example.com"},
            headers=as_actor(newcomer),
        )
        assert resp.status_code == 200
        assert resp.json()["balance"] == 0

        me = await client.get("/api/accounts/me", headers=as_actor(newcomer))
        assert me.json()["email"] == "c9@example.com"

    async def test_cannot_sync_someone_else(self, client, accounts, as_actor):
        resp = await client.post(
            "/api/accounts",
            json={"account_id": "client-2", "role": "client"},
            headers=as_actor(accounts["client"]),
        )
        assert resp.status_code == 409

    async def test_cannot_escalate_role(self, client, accounts, as_actor):
        resp = await client.post(
            "/api/accounts",
            json={"account_id": "client-1", "role": "admin"},
            headers=as_actor(accounts["client"]),
        )
        assert resp.status_code == 409

    async def test_freelancer_profile_included(self, client, accounts, as_actor):
        me = await client.get("/api/accounts/me", headers=as_actor(accounts["freelancer"]))
        assert me.json()["freelancer_profile"]["status"] == "APPROVED"

    async def test_availability_blocks_claims(self, client, accounts, fund, as_actor):
        designer_h = as_actor(accounts["freelancer"])
        resp = await client.put(
            "/api/freelancers/me/availability", json={"available": False}, headers=designer_h
        )
        assert resp.json() == {"account_id": "designer-1", "available": False}

        await fund(accounts["client"].id, 50)
        created = await client.post(
            "/api/tasks",
            json={"category": "static-ads", "requirements": STATIC_AD},
            headers=as_actor(accounts["client"]),
        )
        task_id = created.json()["task"]["task_id"]
        claim = await client.post(f"/api/tasks/{task_id}/claim", headers=designer_h)
        assert claim.status_code == 409
        assert claim.json()["error"]["details"]["available"] is False

    async def test_availability_requires_freelancer(self, client, accounts, as_actor):
        resp = await client.put(
            "/api/freelancers/me/availability",
            json={"available": False},
            headers=as_actor(accounts["client"]),
        )
        assert resp.status_code == 409


class TestLedgerRoutes:
    """/api/ledger"""

    async def test_own_history(self, client, accounts, fund, as_actor):
        await fund(accounts["client"].id, 40)
        resp = await client.get("/api/ledger", headers=as_actor(accounts["client"]))
        body = resp.json()
        assert body["balance"] == 40
        assert [e["kind"] for e in body["entries"]] == ["PURCHASE"]

    async def test_balance(self, client, accounts, fund, as_actor):
        await fund(accounts["client"].id, 15)
        resp = await client.get("/api/ledger/balance", headers=as_actor(accounts["client"]))
        assert resp.json() == {"account_id": "client-1", "balance": 15}

    async def test_other_account_forbidden(self, client, accounts, as_actor):
        resp = await client.get(
            "/api/ledger?account_id=client-2", headers=as_actor(accounts["client"])
        )
        assert resp.status_code == 409

    async def test_admin_reads_any_account(self, client, accounts, fund, as_actor):
        await fund(accounts["other_client"].id, 5)
        resp = await client.get(
            "/api/ledger/balance?account_id=client-2", headers=as_actor(accounts["admin"])
        )
        assert resp.json()["balance"] == 5

    async def test_unknown_account(self, client, accounts, as_actor):
        resp = await client.get(
            "/api/ledger?account_id=ghost", headers=as_actor(accounts["admin"])
        )
        assert resp.status_code == 404
