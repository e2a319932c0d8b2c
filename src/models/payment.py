"""Payment model type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict


PaymentStatus = Literal["succeeded", "failed"]


class Payment(TypedDict):
    """Payments table row representation.

    Rows are append-only. ``order_id`` is null for failed attempts that
    could not be correlated with an order.
    """

    id: str
    order_id: str | None
    payment_intent_id: str
    amount: int
    currency: str
    status: PaymentStatus
    payment_method: str | None
    failure_reason: str | None
    metadata: dict[str, Any]
    created_at: datetime
