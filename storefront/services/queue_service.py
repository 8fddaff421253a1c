"""
Webhook delivery queue.

Durable queue of outbound deliveries stored in webhook_queue. Entries
are never deleted; COMPLETED and FAILED rows stay for the audit trail.
"""
from datetime import datetime
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.models.base import utcnow
from storefront.models.webhook import QueueStatus, WebhookEventType, WebhookQueueEntry


class QueueService:
    """Service for the webhook delivery queue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        order_id: str,
        destination_url: str,
        payload: dict,
        event_type: WebhookEventType | str,
        max_attempts: int
    ) -> WebhookQueueEntry:
        """
        Insert a PENDING entry.

        No dedup: two calls for the same order and event give two entries.

        Args:
            order_id: Order the event belongs to
            destination_url: URL as configured at enqueue time
            payload: Fully built payload dict
            event_type: payment_link_created or order_completed
            max_attempts: Delivery attempts before the entry fails

        Returns:
            Newly created queue entry
        """
        now = utcnow()
        entry = WebhookQueueEntry(
            order_id=str(order_id),
            destination_url=destination_url,
            payload=payload,
            event_type=WebhookEventType(event_type).value,
            status=QueueStatus.PENDING.value,
            attempts=0,
            max_attempts=max(1, max_attempts),
            next_retry_at=None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def fetch_due_entries(
        self,
        limit: int | None = None,
        now: datetime | None = None
    ) -> list[WebhookQueueEntry]:
        """
        Get PENDING entries whose retry time has passed, oldest first.

        Args:
            limit: Batch size (defaults to WEBHOOK_BATCH_SIZE)
            now: Reference time (defaults to current UTC)
        """
        now = now or utcnow()
        stmt = (
            select(WebhookQueueEntry)
            .where(
                WebhookQueueEntry.status == QueueStatus.PENDING.value,
                (WebhookQueueEntry.next_retry_at.is_(None))
                | (WebhookQueueEntry.next_retry_at <= now),
            )
            .order_by(WebhookQueueEntry.created_at.asc())
            .limit(limit or settings.WEBHOOK_BATCH_SIZE)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def claim(self, entry: WebhookQueueEntry) -> bool:
        """
        Move an entry from PENDING to PROCESSING.

        Conditional on the row still being PENDING, so an entry already
        claimed by another drain, or already terminal, is not claimed.

        Returns:
            True if this call claimed the entry
        """
        stmt = (
            update(WebhookQueueEntry)
            .where(
                WebhookQueueEntry.id == entry.id,
                WebhookQueueEntry.status == QueueStatus.PENDING.value,
            )
            .values(status=QueueStatus.PROCESSING.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        claimed = result.rowcount == 1
        await self.db.refresh(entry)
        return claimed

    async def mark_completed(self, entry: WebhookQueueEntry) -> WebhookQueueEntry:
        """PROCESSING -> COMPLETED."""
        entry.status = QueueStatus.COMPLETED.value
        entry.next_retry_at = None
        entry.error_message = None
        entry.updated_at = utcnow()
        await self.db.commit()
        return entry

    async def schedule_retry(
        self,
        entry: WebhookQueueEntry,
        attempts: int,
        next_retry_at: datetime,
        error_message: str
    ) -> WebhookQueueEntry:
        """PROCESSING -> PENDING with a later retry time."""
        entry.status = QueueStatus.PENDING.value
        entry.attempts = attempts
        entry.next_retry_at = next_retry_at
        entry.error_message = error_message
        entry.updated_at = utcnow()
        await self.db.commit()
        return entry

    async def mark_failed(
        self,
        entry: WebhookQueueEntry,
        attempts: int,
        error_message: str
    ) -> WebhookQueueEntry:
        """PROCESSING -> FAILED. Terminal."""
        entry.status = QueueStatus.FAILED.value
        entry.attempts = min(attempts, entry.max_attempts)
        entry.next_retry_at = None
        entry.error_message = error_message
        entry.updated_at = utcnow()
        await self.db.commit()
        return entry

    async def get_entry(self, entry_id: str) -> WebhookQueueEntry | None:
        """Get queue entry by ID."""
        stmt = select(WebhookQueueEntry).where(WebhookQueueEntry.id == entry_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entries_for_order(self, order_id: str) -> list[WebhookQueueEntry]:
        """All queue entries for an order, newest first."""
        stmt = (
            select(WebhookQueueEntry)
            .where(WebhookQueueEntry.order_id == str(order_id))
            .order_by(WebhookQueueEntry.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_entries(
        self,
        status: QueueStatus | str | None = None,
        limit: int = 50
    ) -> list[WebhookQueueEntry]:
        """Latest queue entries, optionally filtered by status."""
        stmt = select(WebhookQueueEntry)
        if status:
            stmt = stmt.where(WebhookQueueEntry.status == QueueStatus(status).value)
        stmt = stmt.order_by(WebhookQueueEntry.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, status: QueueStatus | str) -> int:
        stmt = (
            select(func.count())
            .select_from(WebhookQueueEntry)
            .where(WebhookQueueEntry.status == QueueStatus(status).value)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()
