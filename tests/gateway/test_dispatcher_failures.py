"""外部渠道故障测试

邮件渠道故障不影响已提交的流转与站内通知，只记录失败的投递。
"""

import pytest
from atelier.channels import EchoChannel
from atelier.core.models import DeliveryStatus, TaskStatus

STATIC_AD = {"kind": "static-ads", "title": "Launch banner", "dimensions": ["1080x1080"]}


@pytest.fixture
def email_channel() -> EchoChannel:
    return EchoChannel(name="email", fail_with="mail down")


async def test_email_failure_does_not_block_approve(gateway, store_group, accounts):
    engine = gateway.engine
    client, designer = accounts["client"], accounts["freelancer"]
    await engine.record_purchase(client.id, 100, "pi_fail")
    task_id = (await engine.create_task(client, "static-ads", STATIC_AD)).task.task_id
    await engine.claim_task(task_id, designer)
    await engine.start_task(task_id, designer)
    await engine.submit_deliverable(task_id, designer, ["v1.png"])

    result = await engine.approve_task(task_id, client)
    await gateway.dispatcher.drain()

    assert result.task.status == TaskStatus.COMPLETED
    assert (await engine.get_task(task_id)).status == TaskStatus.COMPLETED

    notifications = await store_group.notification_store.list_notifications("designer-1")
    assert [n.kind.value for n in notifications] == ["TASK_APPROVED"]

    approve_event = (await engine.get_task_events(task_id))[-1]
    key = f"{task_id}:COMPLETED:{approve_event.task_seq}:designer-1:TASK_APPROVED:email"
    delivery = await store_group.notification_store.get_delivery(key)
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.last_error == "mail down"
    assert delivery.attempts == 1

    assert gateway.email.sent == []
    assert await store_group.event_store.list_undispatched() == []


async def test_failed_email_not_retried_on_recover(gateway, store_group, accounts):
    engine = gateway.engine
    await engine.record_purchase("client-1", 40, "pi_retry")
    task_id = (await engine.create_task(accounts["client"], "static-ads", STATIC_AD)).task.task_id
    await engine.claim_task(task_id, accounts["freelancer"])
    await gateway.dispatcher.drain()
    events = await engine.get_task_events(task_id)
    key = f"{task_id}:ASSIGNED:{events[-1].task_seq}:client-1:TASK_ASSIGNED:email"
    assert (await store_group.notification_store.get_delivery(key)).status == DeliveryStatus.FAILED

    async with store_group.unit_of_work() as conn:
        await conn.execute("UPDATE task_events SET dispatched_at = NULL")
    await gateway.dispatcher.recover()
    await gateway.dispatcher.drain()

    delivery = await store_group.notification_store.get_delivery(key)
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.attempts == 1


class RaisingTeamChannel:
    """违反 send() 约定、直接抛出异常的渠道"""

    name = "team_chat"

    async def send(self, recipient, message):
        raise RuntimeError("webhook client crashed")


@pytest.fixture
def team_channel() -> RaisingTeamChannel:
    return RaisingTeamChannel()


async def test_raising_channel_recorded_as_failed(gateway, store_group, accounts):
    await gateway.engine.record_purchase("client-1", 30, "pi_crash")
    await gateway.dispatcher.drain()

    delivery = await store_group.notification_store.get_delivery(
        "purchase:pi_crash:team:purchases:team_chat"
    )
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.attempts == 1
    assert "webhook client crashed" in delivery.last_error
    assert gateway.dispatcher.running
