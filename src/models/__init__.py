"""Database model type definitions."""

from src.models.order import EmailRecord, Order, OrderStatus, Pricing
from src.models.payment import Payment, PaymentStatus
from src.models.user import User
from src.models.voucher import Voucher, VoucherUsage

__all__ = [
    "EmailRecord",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Pricing",
    "User",
    "Voucher",
    "VoucherUsage",
]
