"""
Order, customer and product models.

These tables belong to the storefront's order management. The webhook
pipeline only reads them.
"""
import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import String, Text, Integer, Float, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from storefront.models.base import Base, TimestampMixin


class Customer(Base, TimestampMixin):
    """Customer record, optionally linked from an order."""
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    provider_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    orders = relationship("Order", back_populates="customer")

    def __repr__(self):
        return f"<Customer(id={self.id}, email={self.email})>"


class Order(Base, TimestampMixin):
    """
    Preorder placed through the storefront.
    
    order_items holds the line items as written by checkout: a JSON
    string, a list of objects, or a single object.
    """
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    payment_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    order_items: Mapped[Any] = mapped_column(JSON, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    tax_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    shipping_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipping_state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipping_zip: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_link_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_link_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount_paid: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_invoice_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    customer = relationship("Customer", back_populates="orders")

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status})>"


class Product(Base, TimestampMixin):
    """Catalog product. Plates are identified by weight in pounds."""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    selling_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self):
        return f"<Product(weight={self.weight}, title={self.title})>"
