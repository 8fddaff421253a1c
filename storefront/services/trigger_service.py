"""
Webhook triggers.

Entry points called by order processing when a payment link is created
or an order is paid. They build the payload and queue it; delivery
happens later in the worker.

These functions never raise. A failure here must not fail checkout,
payment or fulfillment, so every error becomes TriggerResult(success=False).
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import AsyncSessionLocal
from storefront.logging_config import get_logger
from storefront.models.webhook import WebhookEventType
from storefront.routes.metrics import track_webhook_queued
from storefront.schemas.webhook import PayloadMetadata, PaymentData
from storefront.sentry_config import capture_exception
from storefront.services.order_service import OrderService
from storefront.services.payload_builder import (
    PayloadError,
    build_order_completed_payload,
    build_payment_link_payload,
)
from storefront.services.queue_service import QueueService
from storefront.services.settings_service import SettingsService


log = get_logger(component="webhook_triggers")


@dataclass
class TriggerResult:
    success: bool
    queued: bool = False
    entry_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "queued": self.queued}
        if self.entry_id:
            data["entry_id"] = self.entry_id
        if self.error:
            data["error"] = self.error
        return data


class WebhookTriggerService:
    """Builds and queues webhooks for business events."""

    def __init__(
        self,
        db: AsyncSession,
        tracer: Optional[Callable[[str, dict], None]] = None,
        on_queued: Optional[Callable[[], Awaitable]] = None,
    ):
        self.db = db
        self.tracer = tracer
        self.on_queued = on_queued

    def _trace(self, step: str, **data):
        if self.tracer is None:
            return
        try:
            self.tracer(step, data)
        except Exception as e:
            log.warning("webhook_tracer_failed", step=step, error=str(e))

    async def trigger_payment_link_webhook(
        self,
        order_id: str,
        metadata: PayloadMetadata | dict
    ) -> TriggerResult:
        """
        Queue a payment_link_created webhook.

        Call right after the payment link URL is saved on the order.
        """
        def build(order_data, webhook_settings):
            return build_payment_link_payload(order_data, webhook_settings, metadata)

        return await self._trigger(order_id, WebhookEventType.PAYMENT_LINK_CREATED, build)

    async def trigger_order_completed_webhook(
        self,
        order_id: str,
        payment_data: PaymentData | dict,
        metadata: PayloadMetadata | dict
    ) -> TriggerResult:
        """
        Queue an order_completed webhook.

        Call after the order's payment status has moved to paid.
        """
        def build(order_data, webhook_settings):
            return build_order_completed_payload(order_data, webhook_settings, payment_data, metadata)

        return await self._trigger(order_id, WebhookEventType.ORDER_COMPLETED, build)

    async def _trigger(self, order_id: str, event_type: WebhookEventType, build) -> TriggerResult:
        trigger_log = log.bind(order_id=str(order_id), event_type=event_type.value)
        try:
            webhook_settings = await SettingsService(self.db).get_settings()
            if webhook_settings is None or not webhook_settings.is_deliverable:
                # Not configured is not an error
                trigger_log.info("webhook_not_configured")
                self._trace("skipped", order_id=str(order_id), reason="not_configured")
                return TriggerResult(success=True)

            order_data = await OrderService(self.db).get_order_data(
                order_id,
                include_products=webhook_settings.include_order_items,
            )
            if order_data is None:
                trigger_log.warning("webhook_order_not_found")
                return TriggerResult(success=False, error="Order not found")

            try:
                payload = build(order_data, webhook_settings)
            except PayloadError as e:
                trigger_log.warning("webhook_payload_invalid", error=str(e))
                self._trace("payload_invalid", order_id=str(order_id), error=str(e))
                return TriggerResult(success=False, error=str(e))

            entry = await QueueService(self.db).enqueue(
                order_id=str(order_id),
                destination_url=webhook_settings.destination_url,
                payload=payload.to_dict(),
                event_type=event_type,
                max_attempts=webhook_settings.retry_attempts,
            )
            track_webhook_queued(event_type.value)
            trigger_log.info("webhook_queued", entry_id=entry.id, max_attempts=entry.max_attempts)
            self._trace("queued", order_id=str(order_id), entry_id=entry.id)
        except Exception as e:
            trigger_log.error("webhook_trigger_failed", error=str(e))
            capture_exception(e)
            await self.db.rollback()
            return TriggerResult(success=False, error=str(e))

        if self.on_queued is not None:
            try:
                await self.on_queued()
            except Exception as e:
                trigger_log.warning("webhook_drain_kick_failed", error=str(e))

        return TriggerResult(success=True, queued=True, entry_id=entry.id)


async def trigger_payment_link_webhook(order_id: str, metadata: PayloadMetadata | dict) -> TriggerResult:
    """
    Queue a payment_link_created webhook using a fresh session.

    Asks the worker to drain straight away; the cron drain picks the
    entry up anyway if that fails.
    """
    from storefront.worker import enqueue_queue_drain

    async with AsyncSessionLocal() as db:
        service = WebhookTriggerService(db, on_queued=enqueue_queue_drain)
        return await service.trigger_payment_link_webhook(order_id, metadata)


async def trigger_order_completed_webhook(
    order_id: str,
    payment_data: PaymentData | dict,
    metadata: PayloadMetadata | dict
) -> TriggerResult:
    """Queue an order_completed webhook using a fresh session."""
    from storefront.worker import enqueue_queue_drain

    async with AsyncSessionLocal() as db:
        service = WebhookTriggerService(db, on_queued=enqueue_queue_drain)
        return await service.trigger_order_completed_webhook(order_id, payment_data, metadata)
