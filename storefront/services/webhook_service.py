"""
Webhook Service

Drains the delivery queue: signs and POSTs each due entry, then
completes it, schedules an exponential-backoff retry, or fails it.
Every HTTP attempt is written to the delivery log exactly once.

A drain is bounded (one batch, entries processed in order) and meant to
be run from a scheduler: the arq cron job or the process endpoint.
"""
import asyncio
import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.config import settings
from storefront.database import AsyncSessionLocal
from storefront.logging_config import get_logger
from storefront.models.base import utcnow
from storefront.models.webhook import QueueStatus, WebhookQueueEntry
from storefront.routes.metrics import (
    track_webhook_failed,
    track_webhook_retry,
    track_webhook_sent,
    update_queue_depth,
)
from storefront.sentry_config import capture_exception
from storefront.services.delivery_log import DeliveryLog, DeliveryLogEntry
from storefront.services.queue_service import QueueService
from storefront.services.settings_service import SettingsService


SIGNATURE_HEADER = "X-Webhook-Signature"

# Outcomes of processing a single queue entry
DELIVERED = "delivered"
RETRY_SCHEDULED = "retry_scheduled"
FAILED = "failed"
SKIPPED = "skipped"
ERROR = "error"

log = get_logger(component="webhook_worker")

Tracer = Callable[[str, dict], None]
ClientFactory = Callable[[float], httpx.AsyncClient]


def serialize_payload(payload: Any) -> bytes:
    """Exact bytes sent on the wire and signed."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def generate_webhook_signature(body: bytes, secret: str) -> str:
    """Generate HMAC-SHA256 signature for webhook payload."""
    digest = hmac.new(
        secret.encode(),
        body,
        hashlib.sha256
    ).hexdigest()
    return f"sha256={digest}"


def build_headers(body: bytes, secret: Optional[str] = None, extra: Optional[dict] = None) -> dict:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.WEBHOOK_USER_AGENT,
    }
    if secret:
        headers[SIGNATURE_HEADER] = generate_webhook_signature(body, secret)
    if extra:
        headers.update(extra)
    return headers


def calculate_retry_delay(retry_delay_seconds: int, attempts: int) -> int:
    """
    Backoff before the next attempt.

    attempts is the number of failed attempts so far (1 for the first
    retry), giving base, 2*base, 4*base, ...
    """
    return retry_delay_seconds * (2 ** (max(attempts, 1) - 1))


def default_client_factory(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _log_trace(step: str, data: dict) -> None:
    log.debug("webhook_trace", step=step, **data)


@dataclass
class DeliveryResult:
    """Normalized outcome of one HTTP attempt."""
    success: bool
    status: int = 0
    body: str = ""
    response_time_ms: int = 0
    error: Optional[str] = None


@dataclass
class DrainResult:
    processed: int = 0
    delivered: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    outcomes: dict = field(default_factory=dict)

    def record(self, entry_id: str, outcome: str):
        self.outcomes[entry_id] = outcome
        if outcome == SKIPPED:
            self.skipped += 1
            return
        self.processed += 1
        if outcome == DELIVERED:
            self.delivered += 1
        elif outcome == RETRY_SCHEDULED:
            self.retried += 1
        elif outcome == FAILED:
            self.failed += 1
        else:
            self.errors += 1

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "delivered": self.delivered,
            "retried": self.retried,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class WebhookWorker:
    """
    Delivery worker for the webhook queue.

    Claiming is a conditional PENDING -> PROCESSING update, which keeps
    two drains on one database from sending the same entry. There is no
    lease: an entry left in PROCESSING by a crashed drain stays there
    until someone resets it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        client_factory: ClientFactory = default_client_factory,
        tracer: Optional[Tracer] = None,
        delivery_log: Optional[DeliveryLog] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.tracer = tracer or _log_trace
        self.delivery_log = delivery_log or DeliveryLog(session_factory)

    def _trace(self, step: str, **data):
        try:
            self.tracer(step, data)
        except Exception as e:
            log.warning("webhook_tracer_failed", step=step, error=str(e))

    async def send_webhook(
        self,
        url: str,
        payload: Any,
        timeout_seconds: float,
        secret: Optional[str] = None,
        extra_headers: Optional[dict] = None
    ) -> DeliveryResult:
        """
        POST a payload once.

        The whole request is bounded by timeout_seconds. Transport errors,
        timeouts and non-2xx responses come back as an unsuccessful
        result rather than an exception.
        """
        body = serialize_payload(payload)
        headers = build_headers(body, secret, extra_headers)
        start = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            async with self.client_factory(timeout_seconds) as client:
                response = await asyncio.wait_for(
                    client.post(url, content=body, headers=headers),
                    timeout=timeout_seconds,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return DeliveryResult(
                success=False,
                response_time_ms=elapsed_ms(),
                error=f"Request timed out after {timeout_seconds}s",
            )
        except httpx.HTTPError as e:
            return DeliveryResult(
                success=False,
                response_time_ms=elapsed_ms(),
                error=f"Network error: {e}" if str(e) else f"Network error: {type(e).__name__}",
            )

        success = 200 <= response.status_code < 300
        return DeliveryResult(
            success=success,
            status=response.status_code,
            body=response.text,
            response_time_ms=elapsed_ms(),
            error=None if success else f"HTTP {response.status_code}",
        )

    async def process_entry(self, db: AsyncSession, entry: WebhookQueueEntry) -> str:
        """
        Deliver one queue entry and record the outcome.

        Entries that are not PENDING (already claimed, completed or
        failed) are skipped without sending. Once claimed, a local error
        counts as a failed attempt like any HTTP failure, so the entry
        never stays in PROCESSING.

        Returns:
            One of delivered, retry_scheduled, failed, skipped, error
        """
        queue = QueueService(db)
        entry_log = log.bind(entry_id=entry.id, order_id=entry.order_id, event_type=entry.event_type)

        if not await queue.claim(entry):
            entry_log.info("webhook_entry_skipped", status=entry.status)
            self._trace("skipped", entry_id=entry.id, status=entry.status)
            return SKIPPED
        self._trace("claimed", entry_id=entry.id, attempts=entry.attempts)

        # A rollback expires the instance, keep what the log row needs
        entry_id = entry.id
        log_entry = DeliveryLogEntry(
            order_id=entry.order_id,
            queue_entry_id=entry_id,
            destination_url=entry.destination_url,
            event_type=entry.event_type,
            payload=entry.payload,
            success=False,
            retry_count=entry.attempts,
        )
        retry_delay = settings.WEBHOOK_DEFAULT_RETRY_DELAY
        result = None

        try:
            # Settings can change between retries: read them per attempt
            webhook_settings = await SettingsService(db).get_settings()
            timeout = settings.WEBHOOK_DEFAULT_TIMEOUT
            secret = None
            if webhook_settings is not None:
                timeout = webhook_settings.timeout_seconds or timeout
                retry_delay = webhook_settings.retry_delay_seconds or retry_delay
                secret = webhook_settings.signing_secret

            result = await self.send_webhook(log_entry.destination_url, log_entry.payload, timeout, secret)
            track_webhook_sent(
                log_entry.event_type,
                "success" if result.success else "failure",
                result.response_time_ms / 1000,
            )

            if result.success:
                await queue.mark_completed(entry)
                outcome = DELIVERED
                entry_log.info(
                    "webhook_delivered",
                    status_code=result.status,
                    duration_ms=result.response_time_ms,
                )
                self._trace("delivered", entry_id=entry_id, status_code=result.status)
            else:
                outcome = await self._record_failure(queue, entry, result.error, retry_delay, entry_log)
        except Exception as e:
            await db.rollback()
            error = str(e) or type(e).__name__
            entry_log.error("webhook_entry_processing_error", error=error)
            capture_exception(e)
            result = DeliveryResult(
                success=False,
                status=result.status if result else 0,
                body=result.body if result else "",
                response_time_ms=result.response_time_ms if result else 0,
                error=error,
            )
            outcome = await self._recover_claimed(entry_id, error, retry_delay, entry_log)

        # Logged after the queue transition is committed
        log_entry.success = result.success
        log_entry.response_status = result.status
        log_entry.response_body = result.body
        log_entry.response_time_ms = result.response_time_ms
        log_entry.error_message = result.error
        await self.delivery_log.append(log_entry)
        return outcome

    async def _record_failure(
        self,
        queue: QueueService,
        entry: WebhookQueueEntry,
        error: str,
        retry_delay: int,
        entry_log
    ) -> str:
        """Count a failed attempt: schedule a retry, or fail the entry at max_attempts."""
        attempts = entry.attempts + 1
        if attempts >= entry.max_attempts:
            await queue.mark_failed(entry, attempts, error)
            track_webhook_failed(entry.event_type)
            entry_log.error(
                "webhook_failed",
                attempts=attempts,
                max_attempts=entry.max_attempts,
                error=error,
            )
            self._trace("failed", entry_id=entry.id, attempts=attempts, error=error)
            return FAILED

        delay = calculate_retry_delay(retry_delay, attempts)
        next_retry_at = utcnow() + timedelta(seconds=delay)
        await queue.schedule_retry(entry, attempts, next_retry_at, error)
        track_webhook_retry(entry.event_type)
        entry_log.warning(
            "webhook_retry_scheduled",
            attempts=attempts,
            max_attempts=entry.max_attempts,
            delay_seconds=delay,
            error=error,
        )
        self._trace(
            "retry_scheduled",
            entry_id=entry.id,
            attempts=attempts,
            delay_seconds=delay,
            error=error,
        )
        return RETRY_SCHEDULED

    async def _recover_claimed(self, entry_id: str, error: str, retry_delay: int, entry_log) -> str:
        """Apply the failure transition to a claimed entry from a fresh session."""
        try:
            async with self.session_factory() as db:
                queue = QueueService(db)
                entry = await queue.get_entry(entry_id)
                if entry is None or entry.status != QueueStatus.PROCESSING.value:
                    return ERROR
                return await self._record_failure(queue, entry, error, retry_delay, entry_log)
        except Exception as e:
            entry_log.error("webhook_entry_recovery_failed", error=str(e))
            capture_exception(e)
            return ERROR

    async def drain(self, limit: Optional[int] = None) -> DrainResult:
        """
        Process one batch of due entries, oldest first.

        Each entry gets its own session, so an error on one entry never
        stops the rest of the batch. Returns counts per outcome. Never
        raises.
        """
        result = DrainResult()
        try:
            async with self.session_factory() as db:
                entry_ids = [entry.id for entry in await QueueService(db).fetch_due_entries(limit)]
        except Exception as e:
            log.error("webhook_queue_fetch_failed", error=str(e))
            capture_exception(e)
            return result

        if entry_ids:
            log.info("webhook_queue_processing", batch_size=len(entry_ids))

        for entry_id in entry_ids:
            try:
                async with self.session_factory() as db:
                    entry = await QueueService(db).get_entry(entry_id)
                    outcome = await self.process_entry(db, entry) if entry else SKIPPED
            except Exception as e:
                log.error("webhook_entry_processing_error", entry_id=entry_id, error=str(e))
                capture_exception(e)
                outcome = ERROR
            result.record(entry_id, outcome)

        try:
            async with self.session_factory() as db:
                update_queue_depth(await QueueService(db).count_by_status(QueueStatus.PENDING))
        except Exception as e:
            log.warning("webhook_queue_depth_failed", error=str(e))

        return result


async def process_webhook_queue(limit: Optional[int] = None) -> DrainResult:
    """Drain one batch with the default worker."""
    return await WebhookWorker().drain(limit)
