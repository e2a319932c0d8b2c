"""Checkout and order Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from src.models.order import EmailType as LifecycleEmailType
from src.models.order import OrderStatus


class CardConfig(BaseModel):
    """Card customisation chosen on the configure page.

    Unknown design keys are kept so the printing team sees everything.
    """

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    title: str | None = Field(default=None, max_length=100)
    company: str | None = Field(default=None, max_length=150)
    base_material: str = Field(default="pvc", description="Card material")
    color: str = Field(default="black", description="Card colour")
    quantity: int = Field(default=1, ge=1, le=100, description="Number of cards")


class ShippingAddressSchema(BaseModel):
    """Postal address for delivery."""

    model_config = ConfigDict(str_strip_whitespace=True)

    address_line1: str = Field(min_length=1, max_length=200)
    address_line2: str | None = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=2, max_length=100)


class PricingSchema(BaseModel):
    """Pricing breakdown in major currency units."""

    subtotal: float
    shipping: float
    tax: float
    discount: float = 0.0
    total: float


class CheckoutRequest(BaseModel):
    """Schema for POST /checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field(min_length=1, max_length=200, description="Full name for the order")
    email: EmailStr = Field(description="Contact email; receives lifecycle emails")
    phone: str | None = Field(default=None, max_length=32)
    card_config: CardConfig
    shipping_address: ShippingAddressSchema
    voucher_code: str | None = Field(default=None, max_length=64)


class CheckoutResponse(BaseModel):
    """Pending order plus the PaymentIntent client secret."""

    order_id: str = Field(description="Created order ID")
    order_number: str = Field(description="Human-readable order number")
    client_secret: str = Field(description="Stripe PaymentIntent client secret")
    payment_intent_id: str = Field(description="Stripe PaymentIntent ID")
    pricing: PricingSchema


class OrderConfirmRequest(BaseModel):
    """Schema for POST /orders/{id}/confirm."""

    payment_intent_id: str = Field(min_length=1, description="PaymentIntent the client just completed")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    user_id: str | None = None
    status: OrderStatus
    customer_name: str
    email: str
    phone: str | None = None
    card_config: dict[str, Any] = Field(default_factory=dict)
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    pricing: PricingSchema
    payment_method: str | None = None
    payment_id: str | None = None
    voucher_code: str | None = None
    voucher_discount: float | None = None
    estimated_delivery: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    emails_sent: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    items: list[OrderResponse] = Field(description="List of orders")
    total: int = Field(description="Number of items returned")


class OrderStatusUpdate(BaseModel):
    """Schema for PATCH /admin/orders/{id}/status."""

    status: OrderStatus
    tracking_number: str | None = Field(default=None, max_length=100)
    tracking_url: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=2000)


class ResendEmailRequest(BaseModel):
    """Schema for re-sending one lifecycle email."""

    email_type: LifecycleEmailType


class OrderStatsResponse(BaseModel):
    """Order counts per status and revenue from paid orders."""

    total_orders: int
    status_counts: dict[str, int]
    revenue: float


class EmailResultResponse(BaseModel):
    """Outcome of one lifecycle email send."""

    email_type: LifecycleEmailType
    sent: bool
    timestamp: str | None = None
    message_id: str | None = None
    error: str | None = None
    attempts: int = 0
