"""
Webhook API routes.

Admin endpoints for configuring, inspecting and exercising outbound
webhooks, plus the queue processing endpoint hit by an external
scheduler.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, HttpUrl, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.config import settings
from storefront.database import AsyncSessionLocal, get_db
from storefront.dependencies.auth import TokenPayload, require_admin, verify_cron_secret
from storefront.logging_config import get_logger
from storefront.models.webhook import QueueStatus, WebhookEventType
from storefront.schemas.webhook import (
    PayloadMetadata,
    PaymentData,
    SettingsUpdate,
    WebhookSettingsSnapshot,
)
from storefront.services.delivery_log import DeliveryLog
from storefront.services.diagnostics_service import (
    DiagnosticsService,
    log_to_dict,
    queue_entry_to_dict,
)
from storefront.services.order_service import OrderService
from storefront.services.payload_builder import (
    OrderData,
    build_order_completed_payload,
    build_payment_link_payload,
)
from storefront.services.queue_service import QueueService
from storefront.services.settings_service import SettingsService
from storefront.services.trigger_service import WebhookTriggerService
from storefront.services.webhook_service import WebhookWorker


router = APIRouter(prefix="/api/admin/webhooks", tags=["webhooks"])
public_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

log = get_logger(component="webhook_routes")

TEST_BODY_EXCERPT = 500
MASKED_SECRET = "********"


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def get_webhook_worker(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
) -> WebhookWorker:
    return WebhookWorker(session_factory)


class TriggerRequest(BaseModel):
    """Request model for re-running a trigger."""
    event_type: WebhookEventType


class TestWebhookRequest(BaseModel):
    """Request model for a test delivery."""
    url: HttpUrl
    event_type: WebhookEventType = WebhookEventType.PAYMENT_LINK_CREATED
    secret: Optional[str] = None


def settings_to_response(webhook_settings: Optional[WebhookSettingsSnapshot]) -> dict:
    if webhook_settings is None:
        webhook_settings = WebhookSettingsSnapshot()
    data = webhook_settings.model_dump()
    data["signing_secret"] = MASKED_SECRET if webhook_settings.signing_secret else None
    return data


def sample_order_data() -> OrderData:
    """Fixed order used for test deliveries."""
    return OrderData(
        order={
            "id": "test-order-id",
            "order_number": "TEST-0001",
            "status": "pending",
            "payment_status": "paid",
            "customer_email": "test@example.com",
            "customer_name": "Test Customer",
            "customer_phone": "555-0100",
            "order_items": [{"weight": 45, "quantity": 2, "price": 89.99}],
            "total_amount": 194.38,
            "tax_amount": 14.40,
            "shipping_cost": 0,
            "shipping_address": "123 Test St",
            "shipping_city": "Charlotte",
            "shipping_state": "NC",
            "shipping_zip": "28202",
            "payment_link_url": "https://example.com/pay/test",
        },
        customer=None,
        products=[],
    )


# ============================================
# Settings
# ============================================

@router.get("/settings", response_model=dict)
async def get_webhook_settings(
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Get the webhook settings. The signing secret is masked."""
    webhook_settings = await SettingsService(db).get_settings()
    return settings_to_response(webhook_settings)


@router.put("/settings", response_model=dict)
async def update_webhook_settings(
    request: SettingsUpdate,
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Partially update the webhook settings."""
    service = SettingsService(db)
    if not await service.update_settings(request):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update webhook settings"
        )

    log.info(
        "webhook_settings_updated",
        admin_id=admin.sub,
        fields=sorted(request.model_dump(exclude_unset=True)),
    )
    return settings_to_response(await service.get_settings())


# ============================================
# Queue, logs and stats
# ============================================

@router.get("/queue", response_model=dict)
async def list_queue(
    queue_status: Optional[QueueStatus] = Query(default=None, alias="status"),
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Latest 50 queue entries, optionally filtered by status."""
    entries = await QueueService(db).list_entries(status=queue_status, limit=50)
    return {"entries": [queue_entry_to_dict(e) for e in entries]}


@router.get("/logs", response_model=dict)
async def list_logs(
    order_id: Optional[str] = None,
    success: Optional[bool] = None,
    admin: TokenPayload = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
):
    """Latest 50 delivery attempts, optionally filtered."""
    logs = await DeliveryLog(session_factory).list_logs(order_id=order_id, success=success, limit=50)
    return {"logs": [log_to_dict(entry) for entry in logs]}


@router.get("/stats", response_model=dict)
async def get_stats(
    admin: TokenPayload = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
):
    """Delivery totals and average latency."""
    stats = await DeliveryLog(session_factory).get_stats()
    return stats.to_dict()


# ============================================
# Processing and triggers
# ============================================

@router.post("/process", response_model=dict)
async def process_queue_admin(
    admin: TokenPayload = Depends(require_admin),
    worker: WebhookWorker = Depends(get_webhook_worker)
):
    """Drain one batch of the queue now."""
    result = await worker.drain()
    log.info("webhook_queue_processed", admin_id=admin.sub, **result.to_dict())
    return result.to_dict()


@public_router.api_route(
    "/process",
    methods=["GET", "POST"],
    response_model=dict,
    dependencies=[Depends(verify_cron_secret)]
)
async def process_queue(worker: WebhookWorker = Depends(get_webhook_worker)):
    """Drain one batch of the queue. Called by the external scheduler."""
    result = await worker.drain()
    return result.to_dict()


@router.post("/trigger/{order_id}", response_model=dict)
async def trigger_webhook(
    order_id: str,
    request: TriggerRequest,
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Re-run a trigger for an order.

    order_completed uses the payment details stored on the order.
    """
    order = await OrderService(db).find_order(order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    metadata = PayloadMetadata(source="admin", trigger="manual", created_via=admin.email)
    service = WebhookTriggerService(db)

    if request.event_type == WebhookEventType.PAYMENT_LINK_CREATED:
        result = await service.trigger_payment_link_webhook(order.id, metadata)
    else:
        payment = PaymentData(
            method=order.payment_method or "unknown",
            amount_paid=order.amount_paid if order.amount_paid is not None else order.total_amount or 0,
            paid_at=order.paid_at.isoformat() + "Z" if order.paid_at else None,
            provider_payment_id=order.provider_payment_id,
            provider_invoice_id=order.provider_invoice_id,
        )
        result = await service.trigger_order_completed_webhook(order.id, payment, metadata)

    log.info(
        "webhook_manual_trigger",
        admin_id=admin.sub,
        order_id=order.id,
        event_type=request.event_type.value,
        queued=result.queued,
    )
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.error or "Trigger failed"
        )
    return result.to_dict()


@router.post("/test", response_model=dict)
async def send_test_webhook(
    request: TestWebhookRequest,
    admin: TokenPayload = Depends(require_admin),
    worker: WebhookWorker = Depends(get_webhook_worker)
):
    """
    Send a sample payload straight to a URL.

    Nothing is queued or logged. The request carries X-Test-Webhook: true
    so the receiver can tell it apart from real traffic.
    """
    webhook_settings = WebhookSettingsSnapshot()
    metadata = PayloadMetadata(source="admin", trigger="test", created_via=admin.email)
    order_data = sample_order_data()

    try:
        if request.event_type == WebhookEventType.PAYMENT_LINK_CREATED:
            payload = build_payment_link_payload(order_data, webhook_settings, metadata)
        else:
            payment = PaymentData(method="card", amount_paid=order_data.order["total_amount"])
            payload = build_order_completed_payload(order_data, webhook_settings, payment, metadata)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )

    result = await worker.send_webhook(
        str(request.url),
        payload.to_dict(),
        settings.WEBHOOK_DEFAULT_TIMEOUT,
        secret=request.secret,
        extra_headers={"X-Test-Webhook": "true"},
    )
    log.info(
        "webhook_test_sent",
        admin_id=admin.sub,
        success=result.success,
        status_code=result.status,
        duration_ms=result.response_time_ms,
    )
    return {
        "success": result.success,
        "status": result.status,
        "response_time_ms": result.response_time_ms,
        "response_body": (result.body or "")[:TEST_BODY_EXCERPT],
        "error": result.error,
    }


# ============================================
# Diagnostics
# ============================================

@router.get("/diagnose/{order_id}", response_model=dict)
async def diagnose_order(
    order_id: str,
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
):
    """Webhook report for one order, by id or order number."""
    report = await DiagnosticsService(db, session_factory).diagnose_order(order_id)
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )
    return report
