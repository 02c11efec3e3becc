"""支付 webhook 测试

测试内容：
1. 新入账 201，重放 200 且只有一条分录
2. 签名校验
3. 请求体校验
"""

import json

from atelier.gateway.routes.webhooks import sign_payload, verify_signature

SECRET = "whsec_test"


def _body(txn: str = "pi_1", credits: int = 25, account_id: str = "client-1") -> bytes:
    return json.dumps(
        {"account_id": account_id, "credits": credits, "provider_txn_id": txn}
    ).encode()


class TestPaymentWebhook:
    """POST /api/webhooks/payments"""

    async def test_new_purchase(self, client, accounts):
        resp = await client.post("/api/webhooks/payments", content=_body())
        assert resp.status_code == 201
        assert resp.json()["balance"] == 25
        assert resp.json()["entry"]["kind"] == "PURCHASE"
        assert resp.json()["replayed"] is False

    async def test_replay_single_entry(self, client, store_group, accounts):
        first = await client.post("/api/webhooks/payments", content=_body("pi_dup"))
        second = await client.post("/api/webhooks/payments", content=_body("pi_dup"))

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["replayed"] is True
        assert second.json()["entry"]["entry_id"] == first.json()["entry"]["entry_id"]
        history = await store_group.ledger_store.history("client-1")
        assert len(history) == 1

    async def test_unknown_account(self, client, accounts):
        resp = await client.post(
            "/api/webhooks/payments", content=_body(account_id="ghost")
        )
        assert resp.status_code == 404

    async def test_invalid_body(self, client, accounts):
        resp = await client.post(
            "/api/webhooks/payments", content=_body(credits=0)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_signature_required_when_configured(self, client, accounts, monkeypatch):
        monkeypatch.setenv("ATELIER_WEBHOOK_SECRET", SECRET)
        body = _body("pi_signed")

        unsigned = await client.post("/api/webhooks/payments", content=body)
        forged = await client.post(
            "/api/webhooks/payments",
            content=body,
            headers={"X-Webhook-Signature": sign_payload("other", body)},
        )
        signed = await client.post(
            "/api/webhooks/payments",
            content=body,
            headers={"X-Webhook-Signature": sign_payload(SECRET, body)},
        )

        assert unsigned.status_code == 401
        assert unsigned.json()["error"]["code"] == "INVALID_SIGNATURE"
        assert forged.status_code == 401
        assert signed.status_code == 201


def test_verify_signature_without_secret():
    assert verify_signature("", b"{}", None) is True
    assert verify_signature(SECRET, b"{}", None) is False
    assert verify_signature(SECRET, b"{}", sign_payload(SECRET, b"{}").upper()) is True
