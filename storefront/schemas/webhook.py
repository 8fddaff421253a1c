"""
Webhook value objects.

Pydantic models for the settings snapshot and the outbound payload.
The payload is serialized once at enqueue time and never rebuilt.
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict


PAYLOAD_VERSION = "1.0"

# Order sections that are omitted entirely (not sent as null) when absent
OPTIONAL_ORDER_KEYS = ("payment_link_url", "paid_at", "items", "shipping", "pricing")


class WebhookSettingsSnapshot(BaseModel):
    """Immutable view of the webhook_settings row for one operation."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    enabled: bool = False
    destination_url: Optional[str] = None
    signing_secret: Optional[str] = None
    timeout_seconds: int = 30
    retry_attempts: int = 3
    retry_delay_seconds: int = 5
    include_customer_data: bool = True
    include_order_items: bool = True
    include_pricing_data: bool = True
    include_shipping_data: bool = True

    @property
    def is_deliverable(self) -> bool:
        """True when webhooks are on and have somewhere to go."""
        return self.enabled and bool(self.destination_url)


class SettingsUpdate(BaseModel):
    """Partial update for the webhook settings row."""
    enabled: Optional[bool] = None
    destination_url: Optional[str] = None
    signing_secret: Optional[str] = None
    timeout_seconds: Optional[int] = None
    retry_attempts: Optional[int] = None
    retry_delay_seconds: Optional[int] = None
    include_customer_data: Optional[bool] = None
    include_order_items: Optional[bool] = None
    include_pricing_data: Optional[bool] = None
    include_shipping_data: Optional[bool] = None


class PayloadMetadata(BaseModel):
    """Where the event came from."""
    source: str
    created_via: Optional[str] = None
    trigger: Optional[str] = None
    batch_id: Optional[str] = None


class PaymentData(BaseModel):
    """Payment details passed in when an order is paid."""
    method: str
    amount_paid: float
    paid_at: Optional[str] = None
    provider_payment_id: Optional[str] = None
    provider_invoice_id: Optional[str] = None


class OrderItem(BaseModel):
    weight: Any = None
    quantity: float
    price: float
    total: float
    product_title: str


class ShippingBlock(BaseModel):
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: Optional[str] = None


class PricingBlock(BaseModel):
    subtotal: float
    tax_amount: float
    shipping_cost: float
    total: float


class CustomerBlock(BaseModel):
    id: Optional[str] = None
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    provider_customer_id: Optional[str] = None


class OrderBlock(BaseModel):
    id: str
    order_number: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    payment_link_url: Optional[str] = None
    total_amount: float = 0
    currency: str = "USD"
    created_at: Optional[str] = None
    paid_at: Optional[str] = None
    items: Optional[list[OrderItem]] = None
    shipping: Optional[ShippingBlock] = None
    pricing: Optional[PricingBlock] = None


class WebhookPayload(BaseModel):
    """Body of an outbound webhook."""
    version: str = PAYLOAD_VERSION
    event_type: str
    timestamp: str
    order: OrderBlock
    customer: Optional[CustomerBlock] = None
    payment: Optional[PaymentData] = None
    metadata: PayloadMetadata

    def to_dict(self) -> dict:
        """
        JSON-ready dict with unused sections dropped.

        Optional blocks are left out rather than sent as null so the
        receiver can key on their presence.
        """
        data = self.model_dump(mode="json")
        for key in ("customer", "payment"):
            if data.get(key) is None:
                data.pop(key, None)
        if "payment" in data:
            data["payment"] = {k: v for k, v in data["payment"].items() if v is not None}
        for key in OPTIONAL_ORDER_KEYS:
            if data["order"].get(key) is None:
                data["order"].pop(key, None)
        data["metadata"] = {k: v for k, v in data["metadata"].items() if v is not None}
        return data
