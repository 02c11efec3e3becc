"""健康检查测试"""


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_ready(client):
    resp = await client.get("/ready")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["checks"]["sqlite"] == "ok"
    assert body["checks"]["dispatcher"] == "ok"
    assert body["checks"]["realtime_connections"] == 0


async def test_not_ready_when_dispatcher_stopped(client, gateway):
    await gateway.dispatcher.stop()
    resp = await client.get("/ready")
    assert resp.status_code == 503
    assert resp.json()["checks"]["dispatcher"] == "stopped"
