"""Voucher validation schemas."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class VoucherValidateRequest(BaseModel):
    """Schema for POST /vouchers/validate."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=1, max_length=64, description="Voucher code (case-insensitive)")
    order_amount: Decimal = Field(ge=0, description="Order amount the voucher would apply to")
    user_email: EmailStr | None = Field(default=None, description="Email used for the per-user limit")


class VoucherInfo(BaseModel):
    """Public part of a voucher."""

    code: str
    discount_type: str
    discount_value: float


class VoucherValidateResponse(BaseModel):
    """Discount breakdown or rejection reason."""

    valid: bool = Field(description="Whether the voucher applies")
    discount_amount: float = Field(default=0.0, description="Discount in major units")
    final_amount: float = Field(description="Order amount after discount")
    reason: str | None = Field(default=None, description="Rejection reason when not valid")
    voucher: VoucherInfo | None = Field(default=None)
