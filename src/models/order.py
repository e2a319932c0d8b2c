"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict


# Order status values matching the orders.status check constraint
OrderStatus = Literal["pending", "confirmed", "production", "shipped", "delivered", "cancelled"]

# Lifecycle email types recorded on orders.emails_sent
EmailType = Literal["confirmation", "receipt", "production", "shipped", "delivered"]


class Pricing(TypedDict):
    """Pricing breakdown stored in the pricing JSONB column."""

    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float


class EmailRecord(TypedDict, total=False):
    """Outcome of one lifecycle email, keyed by type in emails_sent."""

    sent: bool
    timestamp: str
    message_id: str | None
    error: str | None
    attempts: int


class ShippingAddress(TypedDict, total=False):
    """Shipping address stored in the shipping_address JSONB column."""

    address_line1: str
    address_line2: str | None
    city: str
    state: str | None
    postal_code: str
    country: str


class Order(TypedDict):
    """Order table row representation.

    Orders are never deleted. ``order_number`` is unique and immutable;
    ``status`` only changes through OrderService.
    """

    id: str
    order_number: str
    user_id: str | None
    status: OrderStatus
    customer_name: str
    email: str
    phone: str | None
    card_config: dict[str, Any]
    shipping_address: ShippingAddress
    pricing: Pricing
    payment_method: str | None
    payment_id: str | None
    voucher_code: str | None
    voucher_discount: float | None
    estimated_delivery: str | None
    tracking_number: str | None
    tracking_url: str | None
    emails_sent: dict[str, EmailRecord]
    notes: str | None
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data accepted by OrderService.create."""

    user_id: str | None
    customer_name: str
    email: str
    phone: str | None
    card_config: dict[str, Any]
    shipping_address: ShippingAddress
    pricing: Pricing
    payment_method: str | None
    payment_id: str | None
    voucher_code: str | None
    voucher_discount: float | None
    notes: str | None
    status: OrderStatus


class OrderUpdate(TypedDict, total=False):
    """Fields that may be merged into an existing order.

    ``status`` and ``order_number`` are deliberately absent.
    """

    user_id: str | None
    phone: str | None
    card_config: dict[str, Any]
    shipping_address: ShippingAddress
    payment_method: str
    payment_id: str
    tracking_number: str
    tracking_url: str
    emails_sent: dict[str, EmailRecord]
    notes: str
