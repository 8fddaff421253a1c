"""Tests for webhook payload construction."""
import json
from datetime import datetime

import pytest

from storefront.schemas.webhook import WebhookSettingsSnapshot
from storefront.services.payload_builder import (
    OrderData,
    PayloadError,
    build_order_completed_payload,
    build_payment_link_payload,
    build_pricing,
    parse_order_items,
    product_title_for,
)


NOW = datetime(2026, 10, 18, 9, 30, 0)
METADATA = {"source": "admin", "created_via": "admin_panel"}


def order_data(**overrides) -> OrderData:
    order = {
        "id": "order-1",
        "order_number": "CBP-1001",
        "status": "pending",
        "payment_status": "pending",
        "customer_email": "lifter@example.com",
        "customer_name": "Sam Lifter",
        "customer_phone": "555-0101",
        "order_items": json.dumps([
            {"weight": 45, "quantity": 2, "price": 100.0},
            {"weight": 25, "quantity": 1, "price": 60.0},
        ]),
        "total_amount": 281.2,
        "tax_amount": 11.2,
        "shipping_cost": 10.0,
        "shipping_address": "1 Iron Way",
        "shipping_city": "Raleigh",
        "shipping_state": "NC",
        "shipping_zip": "27601",
        "payment_link_url": "https://pay.example.com/l/abc",
        "created_at": datetime(2026, 10, 1, 12, 0, 0),
        "paid_at": None,
    }
    order.update(overrides)
    return OrderData(
        order=order,
        customer={
            "id": "cust-1",
            "email": "lifter@example.com",
            "first_name": "Sam",
            "last_name": "Lifter",
            "phone": "555-0101",
            "provider_customer_id": "cus_123",
        },
        products=[{"weight": 45.0, "title": "45lb Competition Plate", "selling_price": 100.0}],
    )


def snapshot(**overrides) -> WebhookSettingsSnapshot:
    values = dict(enabled=True, destination_url="https://hooks.example.com/x")
    values.update(overrides)
    return WebhookSettingsSnapshot(**values)


class TestParseOrderItems:

    def test_json_string(self):
        result = parse_order_items('[{"weight": 45, "quantity": 1, "price": 10}]')
        assert result.ok
        assert result.items == [{"weight": 45, "quantity": 1, "price": 10}]

    def test_list_passthrough(self):
        items = [{"weight": 10, "quantity": 2, "price": 5}]
        assert parse_order_items(items).items == items

    def test_single_object_is_wrapped(self):
        result = parse_order_items({"weight": 10, "quantity": 2, "price": 5})
        assert result.items == [{"weight": 10, "quantity": 2, "price": 5}]

    def test_malformed_json_is_empty_with_error(self):
        result = parse_order_items("{not json")
        assert result.items == []
        assert not result.ok
        assert "Invalid order items JSON" in result.error

    def test_unsupported_type(self):
        result = parse_order_items(42)
        assert result.items == []
        assert result.error == "Unsupported order items type: int"

    def test_missing_is_empty_without_error(self):
        assert parse_order_items(None).ok
        assert parse_order_items(None).items == []


class TestProductTitles:

    def test_catalog_title(self):
        products = [{"weight": 45.0, "title": "45lb Competition Plate"}]
        assert product_title_for(45, products) == "45lb Competition Plate"

    def test_synthesized_title(self):
        assert product_title_for(35, []) == "35lb Bumper Plate"

    def test_synthesized_title_keeps_fraction(self):
        assert product_title_for(2.5, []) == "2.5lb Bumper Plate"


def test_pricing_is_recomputed_from_items():
    items = [
        {"weight": 45, "quantity": 2, "price": 100.0},
        {"weight": 25, "price": 60.0},
    ]
    pricing = build_pricing({"tax_amount": "11.20", "shipping_cost": None, "total_amount": 1}, items)

    assert pricing.subtotal == 260.0
    assert pricing.tax_amount == 11.2
    assert pricing.shipping_cost == 0
    assert pricing.total == 271.2


class TestPaymentLinkPayload:

    def test_full_payload(self):
        payload = build_payment_link_payload(order_data(), snapshot(), METADATA, now=NOW).to_dict()

        assert payload["version"] == "1.0"
        assert payload["event_type"] == "payment_link_created"
        assert payload["timestamp"] == "2026-10-18T09:30:00Z"
        assert payload["metadata"] == METADATA
        assert "payment" not in payload

        order = payload["order"]
        assert order["order_number"] == "CBP-1001"
        assert order["payment_link_url"] == "https://pay.example.com/l/abc"
        assert order["currency"] == "USD"
        assert order["created_at"] == "2026-10-01T12:00:00"
        assert "paid_at" not in order
        assert [item["product_title"] for item in order["items"]] == [
            "45lb Competition Plate",
            "25lb Bumper Plate",
        ]
        assert order["items"][0]["total"] == 200.0
        assert order["pricing"] == {
            "subtotal": 260.0,
            "tax_amount": 11.2,
            "shipping_cost": 10.0,
            "total": 281.2,
        }
        assert order["shipping"]["zip_code"] == "27601"

        customer = payload["customer"]
        assert customer["email"] == "lifter@example.com"
        assert customer["full_name"] == "Sam Lifter"
        assert customer["provider_customer_id"] == "cus_123"

    def test_inclusion_flags_drop_sections(self):
        webhook_settings = snapshot(
            include_customer_data=False,
            include_order_items=False,
            include_pricing_data=False,
            include_shipping_data=False,
        )
        payload = build_payment_link_payload(order_data(), webhook_settings, METADATA, now=NOW).to_dict()

        assert "customer" not in payload
        assert "items" not in payload["order"]
        assert "pricing" not in payload["order"]
        assert "shipping" not in payload["order"]
        assert payload["order"]["order_number"] == "CBP-1001"

    def test_malformed_items_still_builds(self):
        payload = build_payment_link_payload(
            order_data(order_items="{broken"),
            snapshot(),
            METADATA,
            now=NOW,
        ).to_dict()

        assert "items" not in payload["order"]
        assert payload["order"]["pricing"]["subtotal"] == 0

    def test_requires_payment_link(self):
        with pytest.raises(PayloadError, match="payment_link_url"):
            build_payment_link_payload(order_data(payment_link_url=None), snapshot(), METADATA)

    def test_requires_customer_email(self):
        with pytest.raises(PayloadError, match="customer_email"):
            build_payment_link_payload(order_data(customer_email=""), snapshot(), METADATA)


class TestOrderCompletedPayload:

    PAYMENT = {
        "method": "card",
        "amount_paid": 281.2,
        "paid_at": "2026-10-18T09:00:00Z",
        "provider_payment_id": "pay_1",
    }

    def test_payment_block(self):
        payload = build_order_completed_payload(
            order_data(payment_status="paid"),
            snapshot(),
            self.PAYMENT,
            {"source": "payment_provider", "trigger": "invoice.paid"},
            now=NOW,
        ).to_dict()

        assert payload["event_type"] == "order_completed"
        assert payload["payment"] == self.PAYMENT
        assert payload["order"]["paid_at"] == "2026-10-18T09:00:00Z"
        assert payload["metadata"] == {"source": "payment_provider", "trigger": "invoice.paid"}

    def test_paid_at_falls_back_to_order(self):
        payload = build_order_completed_payload(
            order_data(payment_status="paid", paid_at=datetime(2026, 10, 17, 8, 0, 0)),
            snapshot(),
            {"method": "card", "amount_paid": 281.2},
            METADATA,
            now=NOW,
        ).to_dict()

        assert payload["order"]["paid_at"] == "2026-10-17T08:00:00"
        assert "paid_at" not in payload["payment"]

    def test_requires_paid_status(self):
        with pytest.raises(PayloadError, match="payment_status=paid"):
            build_order_completed_payload(order_data(), snapshot(), self.PAYMENT, METADATA)
