"""Tests for the arq worker entry points."""
from storefront import worker as arq_worker
from storefront.services.trigger_service import WebhookTriggerService
from storefront.services.webhook_service import WebhookWorker
from tests.factories import Receiver, add_order, add_settings


async def test_cron_job_drains_queue(db, session_factory):
    await add_settings(db)
    order = await add_order(db)
    await WebhookTriggerService(db).trigger_payment_link_webhook(order.id, {"source": "checkout"})
    receiver = Receiver()
    ctx = {"webhook_worker": WebhookWorker(session_factory, client_factory=receiver.client_factory)}

    result = await arq_worker.process_webhook_queue(ctx)

    assert result["processed"] == 1
    assert result["delivered"] == 1
    assert len(receiver.requests) == 1


async def test_enqueue_drain_without_redis_returns_false(monkeypatch):
    async def no_redis(*args, **kwargs):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr("arq.create_pool", no_redis)

    assert await arq_worker.enqueue_queue_drain() is False


def test_worker_settings_schedule_drain():
    assert arq_worker.process_webhook_queue in arq_worker.WorkerSettings.functions
    assert len(arq_worker.WorkerSettings.cron_jobs) == 1
