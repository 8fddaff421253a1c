"""
Order lookups for the webhook pipeline.

Loads an order with its customer and the catalog products its line
items refer to, and flattens them into the dicts the payload builder
works on.
"""
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.models.order import Customer, Order, Product
from storefront.services.payload_builder import OrderData, parse_order_items


ORDER_FIELDS = (
    "id", "order_number", "status", "payment_status",
    "customer_email", "customer_name", "customer_phone", "order_items",
    "total_amount", "tax_amount", "shipping_cost",
    "shipping_address", "shipping_city", "shipping_state", "shipping_zip",
    "payment_link_url", "payment_link_created_at",
    "payment_method", "amount_paid", "provider_payment_id", "provider_invoice_id",
    "paid_at", "created_at", "updated_at",
)


def order_to_dict(order: Order) -> dict:
    return {name: getattr(order, name) for name in ORDER_FIELDS}


def customer_to_dict(customer: Customer | None) -> dict | None:
    if customer is None:
        return None
    return {
        "id": customer.id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "phone": customer.phone,
        "provider_customer_id": customer.provider_customer_id,
    }


class OrderService:
    """Read-only access to orders, customers and products."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_order(self, order_id: str) -> Order | None:
        """Get order by ID, with its customer loaded."""
        stmt = (
            select(Order)
            .options(selectinload(Order.customer))
            .where(Order.id == str(order_id))
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_order(self, identifier: str) -> Order | None:
        """Get order by ID or by order number."""
        stmt = (
            select(Order)
            .options(selectinload(Order.customer))
            .where(or_(Order.id == str(identifier), Order.order_number == str(identifier)))
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_products_by_weight(self, weights: list) -> list[dict]:
        """Catalog products matching any of the given plate weights."""
        numeric = []
        for weight in weights:
            try:
                numeric.append(float(weight))
            except (TypeError, ValueError):
                continue
        if not numeric:
            return []

        stmt = select(Product).where(Product.weight.in_(numeric))
        result = await self.db.execute(stmt)
        return [
            {"weight": p.weight, "title": p.title, "selling_price": p.selling_price}
            for p in result.scalars().all()
        ]

    async def get_order_data(self, order_id: str, include_products: bool = True) -> OrderData | None:
        """
        Load everything the payload builder needs for one order.

        Returns:
            OrderData, or None if the order does not exist
        """
        order = await self.get_order(order_id)
        if order is None:
            return None

        products = []
        if include_products:
            items = parse_order_items(order.order_items).items
            products = await self.get_products_by_weight([item.get("weight") for item in items])

        return OrderData(
            order=order_to_dict(order),
            customer=customer_to_dict(order.customer),
            products=products,
        )
