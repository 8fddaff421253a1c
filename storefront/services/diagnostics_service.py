"""
Webhook diagnostics.

Read-only report on one order's webhook journey: the order, its queue
entries, its delivery attempts and the current settings, plus a
one-line diagnosis for whoever is troubleshooting. Performs no writes.
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database import AsyncSessionLocal
from storefront.models.webhook import QueueStatus, WebhookLog, WebhookQueueEntry
from storefront.schemas.webhook import WebhookSettingsSnapshot
from storefront.services.delivery_log import DeliveryLog
from storefront.services.order_service import OrderService, order_to_dict
from storefront.services.queue_service import QueueService
from storefront.services.settings_service import SettingsService


NOT_CONFIGURED = "not configured"
LINK_NEVER_CREATED = "link never created"
FAILED_BEFORE_QUEUEING = "failed before queueing"
NEVER_PROCESSED = "queued but never processed by worker"
DELIVERED = "delivered successfully"

URL_DISPLAY_LENGTH = 50


def redact_url(url: Optional[str]) -> Optional[str]:
    """Shorten a destination URL for display; the tail usually carries the hook key."""
    if not url:
        return url
    if len(url) <= URL_DISPLAY_LENGTH:
        return url
    return url[:URL_DISPLAY_LENGTH] + "..."


def settings_summary(webhook_settings: Optional[WebhookSettingsSnapshot]) -> dict:
    if webhook_settings is None:
        return {"configured": False}
    return {
        "configured": webhook_settings.is_deliverable,
        "enabled": webhook_settings.enabled,
        "destination_url": redact_url(webhook_settings.destination_url),
        "has_signing_secret": bool(webhook_settings.signing_secret),
        "timeout_seconds": webhook_settings.timeout_seconds,
        "retry_attempts": webhook_settings.retry_attempts,
        "retry_delay_seconds": webhook_settings.retry_delay_seconds,
    }


def queue_entry_to_dict(entry: WebhookQueueEntry) -> dict:
    return {
        "id": entry.id,
        "order_id": entry.order_id,
        "event_type": entry.event_type,
        "status": entry.status,
        "attempts": entry.attempts,
        "max_attempts": entry.max_attempts,
        "destination_url": redact_url(entry.destination_url),
        "next_retry_at": entry.next_retry_at.isoformat() if entry.next_retry_at else None,
        "error_message": entry.error_message,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


def log_to_dict(entry: WebhookLog) -> dict:
    return {
        "id": entry.id,
        "order_id": entry.order_id,
        "queue_entry_id": entry.queue_entry_id,
        "event_type": entry.event_type,
        "destination_url": redact_url(entry.destination_url),
        "success": entry.success,
        "response_status": entry.response_status,
        "response_body": entry.response_body,
        "response_time_ms": entry.response_time_ms,
        "error_message": entry.error_message,
        "retry_count": entry.retry_count,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def diagnose(
    webhook_settings: Optional[WebhookSettingsSnapshot],
    order: dict,
    queue_entries: list,
    logs: list,
) -> str:
    """
    Walk the decision tree, first match wins.

    logs must be newest first.
    """
    if webhook_settings is None or not webhook_settings.is_deliverable:
        return NOT_CONFIGURED
    if not order.get("payment_link_url"):
        return LINK_NEVER_CREATED
    if not queue_entries:
        return FAILED_BEFORE_QUEUEING
    if not logs:
        return NEVER_PROCESSED
    latest = logs[0]
    if not latest.success:
        return f"latest delivery attempt failed: {latest.error_message or 'unknown error'}"
    return DELIVERED


def find_issues(
    webhook_settings: Optional[WebhookSettingsSnapshot],
    order: dict,
    queue_entries: list,
    logs: list,
) -> tuple[list[str], list[str]]:
    issues = []
    recommendations = []

    if webhook_settings is None or not webhook_settings.enabled:
        issues.append("Webhook delivery is disabled")
        recommendations.append("Enable webhooks in the admin settings")
    elif not webhook_settings.destination_url:
        issues.append("Webhook URL is not configured")
        recommendations.append("Add the automation webhook URL in the admin settings")

    if not order.get("payment_link_url"):
        issues.append("Order does not have a payment link")
        recommendations.append("Generate a payment link for this order first")

    pending = [e for e in queue_entries if e.status == QueueStatus.PENDING.value]
    processing = [e for e in queue_entries if e.status == QueueStatus.PROCESSING.value]
    failed = [e for e in queue_entries if e.status == QueueStatus.FAILED.value]
    if pending:
        issues.append(f"{len(pending)} webhook(s) pending delivery")
        recommendations.append("Run the queue processor or wait for the next scheduled drain")
    if processing:
        issues.append(f"{len(processing)} webhook(s) stuck in processing")
        recommendations.append("Check worker logs for a drain that stopped mid-batch")
    if failed:
        issues.append(f"{len(failed)} webhook(s) failed delivery")
        recommendations.append("Check the webhook URL and the receiving endpoint")

    failed_attempts = [entry for entry in logs if not entry.success]
    if failed_attempts:
        issues.append(f"{len(failed_attempts)} failed delivery attempt(s)")
        recommendations.append("Review the error messages in the delivery log")

    return issues, recommendations


class DiagnosticsService:
    """Assembles the per-order webhook report."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self.db = db
        self.delivery_log = DeliveryLog(session_factory)

    async def diagnose_order(self, identifier: str) -> dict | None:
        """
        Build the report for an order id or order number.

        Returns:
            Report dict, or None if the order does not exist
        """
        order = await OrderService(self.db).find_order(identifier)
        if order is None:
            return None

        order_data = order_to_dict(order)
        webhook_settings = await SettingsService(self.db).get_settings()
        queue_entries = await QueueService(self.db).get_entries_for_order(order.id)
        logs = await self.delivery_log.get_logs_for_order(order.id)

        issues, recommendations = find_issues(webhook_settings, order_data, queue_entries, logs)

        return {
            "order": {
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "customer_email": order.customer_email,
                "total_amount": order.total_amount,
                "payment_link_url": order.payment_link_url,
                "payment_link_created_at": order.payment_link_created_at.isoformat() if order.payment_link_created_at else None,
                "paid_at": order.paid_at.isoformat() if order.paid_at else None,
                "created_at": order.created_at.isoformat() if order.created_at else None,
            },
            "settings": settings_summary(webhook_settings),
            "queue_entries": [queue_entry_to_dict(e) for e in queue_entries],
            "logs": [log_to_dict(entry) for entry in logs],
            "diagnosis": diagnose(webhook_settings, order_data, queue_entries, logs),
            "issues": issues,
            "recommendations": recommendations,
        }
