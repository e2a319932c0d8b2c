"""Voucher model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict


DiscountType = Literal["percentage", "fixed"]


class Voucher(TypedDict):
    """Vouchers table row representation."""

    id: str
    code: str
    discount_type: DiscountType
    discount_value: float
    min_order_value: float
    max_discount_amount: float | None
    usage_limit: int | None
    used_count: int
    user_limit: int | None
    valid_from: datetime | None
    valid_until: datetime | None
    is_active: bool


class VoucherUsage(TypedDict):
    """voucher_usage table row representation."""

    id: str
    voucher_id: str
    user_id: str | None
    user_email: str | None
    order_id: str
    discount_amount: float
    created_at: datetime
