"""Tests for the webhook delivery worker."""
import asyncio
import hashlib
import hmac
import json
from datetime import timedelta

import httpx
import pytest

from storefront.models.base import utcnow
from storefront.models.webhook import QueueStatus
from storefront.services.delivery_log import DeliveryLog
from storefront.services.queue_service import QueueService
from storefront.services.webhook_service import (
    DELIVERED,
    ERROR,
    FAILED,
    RETRY_SCHEDULED,
    SIGNATURE_HEADER,
    SKIPPED,
    WebhookWorker,
    calculate_retry_delay,
    generate_webhook_signature,
    serialize_payload,
)
from tests.factories import HOOK_URL, SECRET, Receiver, add_settings


PAYLOAD = {"event_type": "payment_link_created", "order": {"id": "order-1", "order_number": "CBP-1001"}}


async def enqueue(db, max_attempts=3):
    return await QueueService(db).enqueue(
        order_id="order-1",
        destination_url=HOOK_URL,
        payload=PAYLOAD,
        event_type="payment_link_created",
        max_attempts=max_attempts,
    )


async def reload(session_factory, entry_id):
    async with session_factory() as session:
        return await QueueService(session).get_entry(entry_id)


async def logs_for(session_factory, order_id="order-1"):
    logs = await DeliveryLog(session_factory).get_logs_for_order(order_id)
    return sorted(logs, key=lambda entry: entry.retry_count)


async def make_due(db, entry_id):
    entry = await QueueService(db).get_entry(entry_id)
    await db.refresh(entry)
    entry.next_retry_at = utcnow() - timedelta(seconds=1)
    await db.commit()


class TestHelpers:

    def test_signature(self):
        body = b'{"order":{"id":"1"}}'
        expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert generate_webhook_signature(body, "secret") == f"sha256={expected}"

    @pytest.mark.parametrize("attempts,delay", [(1, 5), (2, 10), (3, 20)])
    def test_backoff_doubles(self, attempts, delay):
        assert calculate_retry_delay(5, attempts) == delay

    def test_serialization_is_compact(self):
        assert serialize_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'


async def test_successful_delivery(db, session_factory, worker, receiver):
    await add_settings(db)
    entry = await enqueue(db)

    result = await worker.drain()

    assert result.to_dict()["delivered"] == 1
    assert result.outcomes == {entry.id: DELIVERED}

    stored = await reload(session_factory, entry.id)
    assert stored.status == QueueStatus.COMPLETED.value
    assert stored.attempts == 0

    request = receiver.requests[0]
    assert request.method == "POST"
    assert str(request.url) == HOOK_URL
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["User-Agent"] == "Carolina-Bumper-Plates-Webhook/1.0"
    assert json.loads(request.content) == PAYLOAD
    expected = hmac.new(SECRET.encode(), request.content, hashlib.sha256).hexdigest()
    assert request.headers[SIGNATURE_HEADER] == f"sha256={expected}"

    logs = await logs_for(session_factory)
    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].response_status == 200
    assert logs[0].response_body == "ok"
    assert logs[0].retry_count == 0
    assert logs[0].queue_entry_id == entry.id


async def test_no_signature_without_secret(db, worker, receiver):
    await add_settings(db, signing_secret=None)
    await enqueue(db)

    await worker.drain()

    assert SIGNATURE_HEADER not in receiver.requests[0].headers


async def test_retries_then_fails(db, session_factory):
    await add_settings(db, retry_delay_seconds=60)
    receiver = Receiver(httpx.Response(500, text="boom"))
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    entry = await enqueue(db, max_attempts=3)

    before = utcnow()
    first = await worker.drain()
    assert first.outcomes == {entry.id: RETRY_SCHEDULED}

    stored = await reload(session_factory, entry.id)
    assert stored.status == QueueStatus.PENDING.value
    assert stored.attempts == 1
    assert stored.error_message == "HTTP 500"
    assert before + timedelta(seconds=59) <= stored.next_retry_at <= utcnow() + timedelta(seconds=61)

    # Not due yet
    assert (await worker.drain()).processed == 0

    await make_due(db, entry.id)
    second = await worker.drain()
    assert second.outcomes == {entry.id: RETRY_SCHEDULED}
    stored = await reload(session_factory, entry.id)
    assert stored.attempts == 2
    assert stored.next_retry_at >= before + timedelta(seconds=119)

    await make_due(db, entry.id)
    third = await worker.drain()
    assert third.outcomes == {entry.id: FAILED}

    stored = await reload(session_factory, entry.id)
    assert stored.status == QueueStatus.FAILED.value
    assert stored.attempts == 3
    assert stored.next_retry_at is None

    logs = await logs_for(session_factory)
    assert [entry.retry_count for entry in logs] == [0, 1, 2]
    assert all(not entry.success for entry in logs)
    assert all(entry.response_status == 500 for entry in logs)
    assert len(receiver.requests) == 3

    # Terminal entries are never picked up again
    assert (await worker.drain()).processed == 0
    assert len(receiver.requests) == 3


async def test_single_attempt_fails_immediately(db, session_factory):
    await add_settings(db)
    receiver = Receiver(httpx.Response(404))
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    entry = await enqueue(db, max_attempts=1)

    result = await worker.drain()

    assert result.outcomes == {entry.id: FAILED}
    assert result.failed == 1
    assert (await reload(session_factory, entry.id)).attempts == 1


async def test_recovers_after_retry(db, session_factory):
    await add_settings(db)
    receiver = Receiver(httpx.Response(503), httpx.Response(200, text="ok"))
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    entry = await enqueue(db)

    await worker.drain()
    await make_due(db, entry.id)
    await worker.drain()

    stored = await reload(session_factory, entry.id)
    assert stored.status == QueueStatus.COMPLETED.value
    logs = await logs_for(session_factory)
    assert [(entry.retry_count, entry.success) for entry in logs] == [(0, False), (1, True)]


async def test_network_error_is_logged(db, session_factory):
    await add_settings(db)

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    receiver = Receiver(refuse)
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    await enqueue(db)

    await worker.drain()

    logs = await logs_for(session_factory)
    assert logs[0].response_status == 0
    assert logs[0].error_message == "Network error: connection refused"


async def test_transport_timeout(db, session_factory):
    await add_settings(db, timeout_seconds=5)

    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    receiver = Receiver(slow)
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    entry = await enqueue(db)

    await worker.drain()

    logs = await logs_for(session_factory)
    assert logs[0].error_message == "Request timed out after 5s"
    assert (await reload(session_factory, entry.id)).status == QueueStatus.PENDING.value


async def test_hard_timeout_on_slow_receiver(session_factory):
    async def hang(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    receiver = Receiver(hang)
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)

    result = await worker.send_webhook(HOOK_URL, PAYLOAD, 0.05)

    assert result.success is False
    assert result.error == "Request timed out after 0.05s"
    assert result.response_time_ms < 5000


async def test_processing_completed_entry_is_skipped(db, session_factory, worker, receiver):
    await add_settings(db)
    entry = await enqueue(db)
    await worker.drain()
    assert len(receiver.requests) == 1

    async with session_factory() as session:
        stored = await QueueService(session).get_entry(entry.id)
        assert await worker.process_entry(session, stored) == SKIPPED

    assert len(receiver.requests) == 1
    assert len(await logs_for(session_factory)) == 1


async def test_response_body_is_truncated(db, session_factory):
    await add_settings(db)
    receiver = Receiver(httpx.Response(200, text="x" * 5000))
    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory)
    await enqueue(db)

    await worker.drain()

    logs = await logs_for(session_factory)
    assert len(logs[0].response_body) == 1000


async def test_log_write_failure_does_not_undo_delivery(db, session_factory, receiver):
    await add_settings(db)

    def broken_factory():
        raise RuntimeError("log database unavailable")

    worker = WebhookWorker(
        session_factory,
        client_factory=receiver.client_factory,
        delivery_log=DeliveryLog(broken_factory),
    )
    entry = await enqueue(db)

    result = await worker.drain()

    assert result.outcomes == {entry.id: DELIVERED}
    assert (await reload(session_factory, entry.id)).status == QueueStatus.COMPLETED.value


async def test_settings_missing_uses_fallbacks(db, session_factory, worker, receiver):
    entry = await enqueue(db)

    result = await worker.drain()

    # Already-queued entries still go out; they just are not signed
    assert result.outcomes == {entry.id: DELIVERED}
    assert SIGNATURE_HEADER not in receiver.requests[0].headers


async def test_drain_processes_in_order(db, session_factory, worker, receiver):
    await add_settings(db)
    queue = QueueService(db)
    first = await enqueue(db)
    second = await queue.enqueue(
        order_id="order-2",
        destination_url=HOOK_URL,
        payload={"order": {"id": "order-2"}},
        event_type="order_completed",
        max_attempts=3,
    )

    result = await worker.drain()

    assert list(result.outcomes) == [first.id, second.id]
    assert [json.loads(r.content)["order"]["id"] for r in receiver.requests] == ["order-1", "order-2"]


async def test_tracer_sees_steps(db, session_factory, receiver):
    await add_settings(db)
    steps = []
    worker = WebhookWorker(
        session_factory,
        client_factory=receiver.client_factory,
        tracer=lambda step, data: steps.append(step),
    )
    await enqueue(db)

    await worker.drain()

    assert steps == ["claimed", "delivered"]


async def test_raising_tracer_is_ignored(db, session_factory, receiver):
    await add_settings(db)

    def tracer(step, data):
        raise RuntimeError("tracer down")

    worker = WebhookWorker(session_factory, client_factory=receiver.client_factory, tracer=tracer)
    entry = await enqueue(db)

    result = await worker.drain()

    assert result.outcomes == {entry.id: DELIVERED}


async def enqueue_second(db, max_attempts=3):
    return await QueueService(db).enqueue(
        order_id="order-2",
        destination_url=HOOK_URL,
        payload={"order": {"id": "order-2"}},
        event_type="order_completed",
        max_attempts=max_attempts,
    )


def fail_once(monkeypatch, method_name, error="database went away"):
    original = getattr(QueueService, method_name)
    calls = []

    async def flaky(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise RuntimeError(error)
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(QueueService, method_name, flaky)


class TestLocalErrors:

    async def test_transition_error_schedules_retry_and_batch_continues(
        self, db, session_factory, worker, receiver, monkeypatch
    ):
        await add_settings(db, retry_delay_seconds=60)
        first = await enqueue(db)
        second = await enqueue_second(db)
        fail_once(monkeypatch, "mark_completed")

        result = await worker.drain()

        assert result.outcomes == {first.id: RETRY_SCHEDULED, second.id: DELIVERED}
        assert len(receiver.requests) == 2

        stored = await reload(session_factory, first.id)
        assert stored.status == QueueStatus.PENDING.value
        assert stored.attempts == 1
        assert stored.next_retry_at is not None
        assert stored.error_message == "database went away"
        assert (await reload(session_factory, second.id)).status == QueueStatus.COMPLETED.value

        logs = await logs_for(session_factory)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "database went away"
        assert logs[0].retry_count == 0

        # The entry is picked up again once due
        await make_due(db, first.id)
        assert (await worker.drain()).outcomes == {first.id: DELIVERED}

    async def test_transition_error_on_last_attempt_fails_entry(
        self, db, session_factory, worker, monkeypatch
    ):
        await add_settings(db)
        entry = await enqueue(db, max_attempts=1)
        fail_once(monkeypatch, "mark_completed")

        result = await worker.drain()

        assert result.outcomes == {entry.id: FAILED}
        stored = await reload(session_factory, entry.id)
        assert stored.status == QueueStatus.FAILED.value
        assert stored.attempts == 1
        logs = await logs_for(session_factory)
        assert [log_row.success for log_row in logs] == [False]

    async def test_error_before_claim_leaves_entry_pending(
        self, db, session_factory, worker, receiver, monkeypatch
    ):
        await add_settings(db)
        first = await enqueue(db)
        second = await enqueue_second(db)
        fail_once(monkeypatch, "claim")

        result = await worker.drain()

        assert result.outcomes == {first.id: ERROR, second.id: DELIVERED}
        assert result.errors == 1
        assert len(receiver.requests) == 1

        stored = await reload(session_factory, first.id)
        assert stored.status == QueueStatus.PENDING.value
        assert stored.attempts == 0
        assert await logs_for(session_factory) == []
