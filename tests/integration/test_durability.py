"""持久性集成测试

进程在派发副作用之前退出：任务、事件、账本完整保留，
重启后 recover() 补发通知，且不会重复。
"""

from pathlib import Path

from atelier.channels import EchoChannel
from atelier.core.models import AccountRole, Actor, Channel, FreelancerStatus
from atelier.core.store import create_store_group
from atelier.gateway.main import create_app, wire_services
from httpx import ASGITransport, AsyncClient

CLIENT = {"X-Actor-Id": "client-1", "X-Actor-Role": "client"}
DESIGNER = {"X-Actor-Id": "designer-1", "X-Actor-Role": "freelancer"}


def _channels() -> dict:
    return {
        Channel.EMAIL: EchoChannel(name="email"),
        Channel.TEAM_CHAT: EchoChannel(name="team_chat"),
    }


class TestOutboxDurability:
    """派发前进程退出"""

    async def test_effects_recovered_after_restart(self, tmp_path: Path, monkeypatch):
        db_path = str(tmp_path / "durable.db")
        monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
        admin = Actor(id="admin-1", role=AccountRole.ADMIN)

        # 第一次启动：派发器未启动，相当于提交后立即崩溃
        app1 = create_app()
        sg1 = await create_store_group(db_path)
        wire_services(app1, sg1, _channels(), app_url="https://app.example.com")
        engine1 = app1.state.engine
        await engine1.upsert_account("client-1", AccountRole.CLIENT, email="c@example.com")
        await engine1.upsert_account(
            "designer-1", AccountRole.FREELANCER, email="d@example.com"
        )
        await engine1.set_freelancer_status("designer-1", FreelancerStatus.APPROVED, admin)
        await engine1.record_purchase("client-1", 50, "pi_durable")

        async with AsyncClient(
            transport=ASGITransport(app=app1), base_url="http://test"
        ) as c1:
            resp = await c1.post(
                "/api/tasks",
                json={
                    "category": "static-ads",
                    "requirements": {
                        "kind": "static-ads",
                        "title": "Durable banner",
                        "dimensions": ["1080x1080"],
                    },
                },
                headers={**CLIENT, "Idempotency-Key": "durable-1"},
            )
            assert resp.status_code == 201
            task_id = resp.json()["task"]["task_id"]
            resp = await c1.post(f"/api/tasks/{task_id}/claim", headers=DESIGNER)
            assert resp.status_code == 200

        assert len(await sg1.event_store.list_undispatched()) == 2
        await sg1.close()

        # 第二次启动：数据完整，outbox 补发
        app2 = create_app()
        sg2 = await create_store_group(db_path)
        channels = _channels()
        dispatcher = wire_services(app2, sg2, channels, app_url="https://app.example.com")
        dispatcher.start()
        try:
            assert await dispatcher.recover() == 2
            await dispatcher.drain()

            async with AsyncClient(
                transport=ASGITransport(app=app2), base_url="http://test"
            ) as c2:
                resp = await c2.get(f"/api/tasks/{task_id}", headers=CLIENT)
                assert resp.status_code == 200
                data = resp.json()
                assert data["task"]["status"] == "ASSIGNED"
                assert data["task"]["title"] == "Durable banner"
                assert len(data["events"]) == 2

                resp = await c2.get("/api/ledger/balance", headers=CLIENT)
                assert resp.json()["balance"] == 40

                resp = await c2.get("/api/notifications", headers=CLIENT)
                kinds = [n["kind"] for n in resp.json()["notifications"]]
                assert kinds == ["TASK_ASSIGNED"]

            team = channels[Channel.TEAM_CHAT]
            assert [m.subject for _, m in team.sent] == ["[Atelier] New task submitted"]
            assert await sg2.event_store.list_undispatched() == []

            # 再次恢复没有待派发事件
            assert await dispatcher.recover() == 0
        finally:
            await dispatcher.stop()
            await sg2.close()
