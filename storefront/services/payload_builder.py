"""
Webhook payload builder.

Turns an order (plus its customer and the matching catalog products)
into the JSON body sent to the automation endpoint. Pure functions,
no database access: the order service loads the data, this module
shapes it.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from storefront.logging_config import get_logger
from storefront.models.base import utcnow
from storefront.models.webhook import WebhookEventType
from storefront.schemas.webhook import (
    CustomerBlock,
    OrderBlock,
    OrderItem,
    PayloadMetadata,
    PaymentData,
    PricingBlock,
    ShippingBlock,
    WebhookPayload,
    WebhookSettingsSnapshot,
)


log = get_logger(component="payload_builder")


class PayloadError(ValueError):
    """Order data is missing something the payload requires."""


@dataclass
class OrderData:
    """An order row with its optional customer and catalog products, as dicts."""
    order: dict
    customer: Optional[dict] = None
    products: list[dict] = field(default_factory=list)


@dataclass
class ItemsParseResult:
    items: list[dict]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_order_items(raw: Any) -> ItemsParseResult:
    """
    Parse stored line items.

    Accepts a JSON string, a list, or a single object. Anything else,
    or JSON that does not decode, gives an empty list plus an error.
    """
    if raw is None or raw == "":
        return ItemsParseResult(items=[])

    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except ValueError as e:
            return ItemsParseResult(items=[], error=f"Invalid order items JSON: {e}")

    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return ItemsParseResult(
            items=[],
            error=f"Unsupported order items type: {type(value).__name__}"
        )

    return ItemsParseResult(items=[item for item in value if isinstance(item, dict)])


def _number(value: Any, default: float = 0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _format_weight(weight: Any) -> str:
    number = _number(weight, default=None)
    if number is None:
        return str(weight)
    return str(int(number)) if number.is_integer() else str(number)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def product_title_for(weight: Any, products: list[dict]) -> str:
    """Catalog title for a plate weight, or a synthesized one."""
    target = _number(weight, default=None)
    for product in products or []:
        if target is not None and _number(product.get("weight"), default=None) == target:
            if product.get("title"):
                return product["title"]
    return f"{_format_weight(weight)}lb Bumper Plate"


def build_items(items: list[dict], products: list[dict]) -> list[OrderItem]:
    result = []
    for item in items:
        quantity = _number(item.get("quantity"), default=1)
        price = _number(item.get("price"))
        result.append(OrderItem(
            weight=item.get("weight"),
            quantity=quantity,
            price=price,
            total=round(price * quantity, 2),
            product_title=product_title_for(item.get("weight"), products),
        ))
    return result


def build_pricing(order: dict, items: list[dict]) -> PricingBlock:
    """Recompute pricing from the line items, not the stored total."""
    subtotal = sum(
        _number(item.get("price")) * _number(item.get("quantity"), default=1)
        for item in items
    )
    tax_amount = _number(order.get("tax_amount"))
    shipping_cost = _number(order.get("shipping_cost"))
    return PricingBlock(
        subtotal=round(subtotal, 2),
        tax_amount=tax_amount,
        shipping_cost=shipping_cost,
        total=round(subtotal + tax_amount + shipping_cost, 2),
    )


def build_shipping(order: dict) -> ShippingBlock:
    return ShippingBlock(
        address=order.get("shipping_address") or "",
        city=order.get("shipping_city") or "",
        state=order.get("shipping_state") or "",
        zip_code=order.get("shipping_zip") or "",
        phone=order.get("customer_phone") or None,
    )


def build_customer(order: dict, customer: Optional[dict]) -> CustomerBlock:
    customer = customer or {}
    return CustomerBlock(
        id=customer.get("id"),
        email=order["customer_email"],
        first_name=customer.get("first_name"),
        last_name=customer.get("last_name"),
        full_name=order.get("customer_name") or None,
        phone=order.get("customer_phone") or customer.get("phone"),
        provider_customer_id=customer.get("provider_customer_id"),
    )


def _check_required(order: dict, extra: dict[str, bool]) -> None:
    missing = []
    if not order.get("order_number"):
        missing.append("order_number")
    if not order.get("customer_email"):
        missing.append("customer_email")
    missing.extend(name for name, ok in extra.items() if not ok)
    if missing:
        raise PayloadError(f"Order data missing required fields: {', '.join(missing)}")


def _build(
    event_type: WebhookEventType,
    order_data: OrderData,
    webhook_settings: WebhookSettingsSnapshot,
    metadata: PayloadMetadata,
    payment: Optional[PaymentData] = None,
    now: Optional[datetime] = None,
) -> WebhookPayload:
    order = order_data.order

    parsed = parse_order_items(order.get("order_items"))
    if not parsed.ok:
        # Fail soft: the event still goes out, without line items
        log.warning(
            "order_items_parse_failed",
            order_id=order.get("id"),
            error=parsed.error,
        )

    paid_at = None
    if event_type == WebhookEventType.ORDER_COMPLETED:
        paid_at = (payment.paid_at if payment else None) or _iso(order.get("paid_at"))

    order_block = OrderBlock(
        id=str(order.get("id")),
        order_number=order["order_number"],
        status=order.get("status"),
        payment_status=order.get("payment_status"),
        payment_link_url=order.get("payment_link_url"),
        total_amount=_number(order.get("total_amount")),
        created_at=_iso(order.get("created_at")),
        paid_at=paid_at,
    )

    if webhook_settings.include_order_items and parsed.items:
        order_block.items = build_items(parsed.items, order_data.products)
    if webhook_settings.include_shipping_data:
        order_block.shipping = build_shipping(order)
    if webhook_settings.include_pricing_data:
        order_block.pricing = build_pricing(order, parsed.items)

    payload = WebhookPayload(
        event_type=event_type.value,
        timestamp=(now or utcnow()).isoformat() + "Z",
        order=order_block,
        payment=payment,
        metadata=metadata,
    )
    if webhook_settings.include_customer_data:
        payload.customer = build_customer(order, order_data.customer)
    return payload


def build_payment_link_payload(
    order_data: OrderData,
    webhook_settings: WebhookSettingsSnapshot,
    metadata: PayloadMetadata | dict,
    now: Optional[datetime] = None,
) -> WebhookPayload:
    """
    Build the payment_link_created payload.

    Raises:
        PayloadError: order number, customer email or payment link missing
    """
    if isinstance(metadata, dict):
        metadata = PayloadMetadata(**metadata)
    _check_required(
        order_data.order,
        {"payment_link_url": bool(order_data.order.get("payment_link_url"))},
    )
    return _build(
        WebhookEventType.PAYMENT_LINK_CREATED,
        order_data,
        webhook_settings,
        metadata,
        now=now,
    )


def build_order_completed_payload(
    order_data: OrderData,
    webhook_settings: WebhookSettingsSnapshot,
    payment_data: PaymentData | dict,
    metadata: PayloadMetadata | dict,
    now: Optional[datetime] = None,
) -> WebhookPayload:
    """
    Build the order_completed payload.

    Raises:
        PayloadError: order number or customer email missing, or the
            order is not paid
    """
    if isinstance(metadata, dict):
        metadata = PayloadMetadata(**metadata)
    if isinstance(payment_data, dict):
        payment_data = PaymentData(**payment_data)
    _check_required(
        order_data.order,
        {"payment_status=paid": order_data.order.get("payment_status") == "paid"},
    )
    return _build(
        WebhookEventType.ORDER_COMPLETED,
        order_data,
        webhook_settings,
        metadata,
        payment=payment_data,
        now=now,
    )
