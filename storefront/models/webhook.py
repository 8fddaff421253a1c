"""
Webhook Models

Settings row, delivery queue and delivery log for outbound webhooks.
"""
import enum
import uuid
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON
from storefront.models.base import Base, utcnow


class WebhookEventType(str, enum.Enum):
    """Business events that produce an outbound webhook."""
    PAYMENT_LINK_CREATED = "payment_link_created"
    ORDER_COMPLETED = "order_completed"


class QueueStatus(str, enum.Enum):
    """Queue entry status. COMPLETED and FAILED are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {QueueStatus.COMPLETED.value, QueueStatus.FAILED.value}


class WebhookSettings(Base):
    """Singleton webhook configuration (id=1)."""
    __tablename__ = "webhook_settings"

    id = Column(Integer, primary_key=True, default=1)
    enabled = Column(Boolean, nullable=False, default=False)
    destination_url = Column(Text, nullable=True)
    signing_secret = Column(String(255), nullable=True)
    timeout_seconds = Column(Integer, nullable=False, default=30)
    retry_attempts = Column(Integer, nullable=False, default=3)
    retry_delay_seconds = Column(Integer, nullable=False, default=5)
    include_customer_data = Column(Boolean, nullable=False, default=True)
    include_order_items = Column(Boolean, nullable=False, default=True)
    include_pricing_data = Column(Boolean, nullable=False, default=True)
    include_shipping_data = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WebhookQueueEntry(Base):
    """One outbound delivery task per (order, event)."""
    __tablename__ = "webhook_queue"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), nullable=False, index=True)
    destination_url = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False)
    event_type = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default=QueueStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<WebhookQueueEntry(id={self.id}, order_id={self.order_id}, status={self.status}, attempts={self.attempts})>"


class WebhookLog(Base):
    """Append-only record of a single HTTP delivery attempt."""
    __tablename__ = "webhook_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), nullable=False, index=True)
    queue_entry_id = Column(String(36), nullable=True, index=True)
    destination_url = Column(Text, nullable=False)
    event_type = Column(String(40), nullable=False)
    payload = Column(JSON, nullable=True)
    response_status = Column(Integer, nullable=False, default=0)
    response_body = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)
