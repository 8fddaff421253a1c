"""Tests for the webhook trigger points."""
from datetime import datetime

from storefront.models.webhook import QueueStatus
from storefront.services.queue_service import QueueService
from storefront.services.trigger_service import WebhookTriggerService
from tests.factories import HOOK_URL, add_order, add_product, add_settings


METADATA = {"source": "admin", "created_via": "admin_panel"}
PAYMENT = {"method": "card", "amount_paid": 281.2, "paid_at": "2026-10-18T09:00:00Z"}


async def test_payment_link_is_queued(db):
    await add_settings(db, retry_attempts=4)
    await add_product(db, 45, "45lb Competition Plate")
    order = await add_order(db)

    result = await WebhookTriggerService(db).trigger_payment_link_webhook(order.id, METADATA)

    assert result.success is True
    assert result.queued is True

    entries = await QueueService(db).get_entries_for_order(order.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.id == result.entry_id
    assert entry.status == QueueStatus.PENDING.value
    assert entry.event_type == "payment_link_created"
    assert entry.destination_url == HOOK_URL
    assert entry.max_attempts == 4
    assert entry.payload["order"]["order_number"] == "CBP-1001"
    assert entry.payload["order"]["items"][0]["product_title"] == "45lb Competition Plate"
    assert entry.payload["customer"]["first_name"] == "Sam"
    assert entry.payload["metadata"] == METADATA


async def test_disabled_settings_queue_nothing(db):
    await add_settings(db, enabled=False)
    order = await add_order(db)

    result = await WebhookTriggerService(db).trigger_payment_link_webhook(order.id, METADATA)

    assert result.success is True
    assert result.queued is False
    assert await QueueService(db).get_entries_for_order(order.id) == []


async def test_missing_settings_queue_nothing(db):
    order = await add_order(db)

    result = await WebhookTriggerService(db).trigger_payment_link_webhook(order.id, METADATA)

    assert result.to_dict() == {"success": True, "queued": False}


async def test_unknown_order(db):
    await add_settings(db)

    result = await WebhookTriggerService(db).trigger_payment_link_webhook("missing", METADATA)

    assert result.success is False
    assert result.error == "Order not found"


async def test_missing_payment_link_is_rejected(db):
    await add_settings(db)
    order = await add_order(db, payment_link_url=None)

    result = await WebhookTriggerService(db).trigger_payment_link_webhook(order.id, METADATA)

    assert result.success is False
    assert "payment_link_url" in result.error
    assert await QueueService(db).get_entries_for_order(order.id) == []


async def test_order_completed_is_queued(db):
    await add_settings(db)
    order = await add_order(db, payment_status="paid", paid_at=datetime(2026, 10, 18, 9, 0, 0))

    result = await WebhookTriggerService(db).trigger_order_completed_webhook(
        order.id, PAYMENT, {"source": "payment_provider", "trigger": "invoice.paid"}
    )

    assert result.queued is True
    entry = (await QueueService(db).get_entries_for_order(order.id))[0]
    assert entry.event_type == "order_completed"
    assert entry.payload["payment"]["method"] == "card"
    assert entry.payload["order"]["paid_at"] == "2026-10-18T09:00:00Z"


async def test_order_completed_requires_paid_order(db):
    await add_settings(db)
    order = await add_order(db)

    result = await WebhookTriggerService(db).trigger_order_completed_webhook(order.id, PAYMENT, METADATA)

    assert result.success is False
    assert "payment_status=paid" in result.error


async def test_invalid_payment_data_does_not_raise(db):
    await add_settings(db)
    order = await add_order(db, payment_status="paid")

    result = await WebhookTriggerService(db).trigger_order_completed_webhook(
        order.id, {"method": "card"}, METADATA
    )

    assert result.success is False
    assert result.queued is False


async def test_each_trigger_adds_an_entry(db):
    await add_settings(db)
    order = await add_order(db)
    service = WebhookTriggerService(db)

    await service.trigger_payment_link_webhook(order.id, METADATA)
    await service.trigger_payment_link_webhook(order.id, METADATA)

    assert len(await QueueService(db).get_entries_for_order(order.id)) == 2


async def test_on_queued_hook(db):
    await add_settings(db)
    order = await add_order(db)
    calls = []

    async def kick():
        calls.append("drain")
        raise RuntimeError("redis down")

    result = await WebhookTriggerService(db, on_queued=kick).trigger_payment_link_webhook(order.id, METADATA)

    assert calls == ["drain"]
    assert result.queued is True


async def test_tracer_records_queued_and_skipped(db):
    order = await add_order(db)
    steps = []
    service = WebhookTriggerService(db, tracer=lambda step, data: steps.append(step))

    await service.trigger_payment_link_webhook(order.id, METADATA)
    await add_settings(db)
    await service.trigger_payment_link_webhook(order.id, METADATA)

    assert steps == ["skipped", "queued"]
