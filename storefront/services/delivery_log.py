"""
Webhook delivery log.

Append-only audit trail, one row per HTTP attempt. Writes go through
their own session so a failed log write can never roll back a queue
transition that has already been committed.
"""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.config import settings
from storefront.database import AsyncSessionLocal
from storefront.logging_config import get_logger
from storefront.models.base import utcnow
from storefront.models.webhook import QueueStatus, WebhookLog, WebhookQueueEntry


log = get_logger(component="delivery_log")


@dataclass
class DeliveryLogEntry:
    """Outcome of one delivery attempt, as handed to the log."""
    order_id: str
    destination_url: str
    event_type: str
    success: bool
    response_status: int = 0
    response_body: str = ""
    response_time_ms: int = 0
    error_message: Optional[str] = None
    retry_count: int = 0
    payload: Optional[dict] = None
    queue_entry_id: Optional[str] = None


@dataclass
class DeliveryStats:
    total_sent: int = 0
    successful: int = 0
    failed: int = 0
    pending: int = 0
    avg_response_time: int = 0

    def to_dict(self) -> dict:
        return {
            "total_sent": self.total_sent,
            "successful": self.successful,
            "failed": self.failed,
            "pending": self.pending,
            "avg_response_time": self.avg_response_time,
        }


def truncate_body(body: Optional[str], limit: Optional[int] = None) -> str:
    """Bound a response body excerpt to `limit` characters."""
    limit = settings.WEBHOOK_RESPONSE_BODY_LIMIT if limit is None else limit
    return (body or "")[:limit]


class DeliveryLog:
    """Writer and reader for webhook_logs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def append(self, entry: DeliveryLogEntry) -> bool:
        """
        Write one attempt record.

        Never raises. Returns False if the row could not be written.
        """
        try:
            async with self.session_factory() as db:
                db.add(WebhookLog(
                    order_id=str(entry.order_id),
                    queue_entry_id=entry.queue_entry_id,
                    destination_url=entry.destination_url,
                    event_type=entry.event_type,
                    payload=entry.payload,
                    response_status=entry.response_status,
                    response_body=truncate_body(entry.response_body),
                    response_time_ms=entry.response_time_ms,
                    success=entry.success,
                    error_message=entry.error_message,
                    retry_count=entry.retry_count,
                    created_at=utcnow(),
                ))
                await db.commit()
            return True
        except Exception as e:
            log.error(
                "webhook_log_write_failed",
                order_id=entry.order_id,
                queue_entry_id=entry.queue_entry_id,
                error=str(e),
            )
            return False

    async def get_logs_for_order(self, order_id: str) -> list[WebhookLog]:
        """All attempts for an order, newest first."""
        async with self.session_factory() as db:
            stmt = (
                select(WebhookLog)
                .where(WebhookLog.order_id == str(order_id))
                .order_by(WebhookLog.created_at.desc())
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_logs(
        self,
        order_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 50
    ) -> list[WebhookLog]:
        """Latest attempts, optionally filtered."""
        async with self.session_factory() as db:
            stmt = select(WebhookLog)
            if order_id is not None:
                stmt = stmt.where(WebhookLog.order_id == str(order_id))
            if success is not None:
                stmt = stmt.where(WebhookLog.success == success)
            stmt = stmt.order_by(WebhookLog.created_at.desc()).limit(limit)
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_stats(self) -> DeliveryStats:
        """Attempt totals, success split, pending queue size and mean latency."""
        try:
            async with self.session_factory() as db:
                totals = await db.execute(
                    select(
                        func.count(WebhookLog.id),
                        func.count(WebhookLog.id).filter(WebhookLog.success.is_(True)),
                        func.avg(WebhookLog.response_time_ms),
                    )
                )
                total, successful, avg_ms = totals.one()
                pending = await db.execute(
                    select(func.count())
                    .select_from(WebhookQueueEntry)
                    .where(WebhookQueueEntry.status == QueueStatus.PENDING.value)
                )
                return DeliveryStats(
                    total_sent=total or 0,
                    successful=successful or 0,
                    failed=(total or 0) - (successful or 0),
                    pending=pending.scalar_one() or 0,
                    avg_response_time=round(avg_ms or 0),
                )
        except Exception as e:
            log.error("webhook_stats_failed", error=str(e))
            return DeliveryStats()
