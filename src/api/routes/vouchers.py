"""Voucher API routes."""

from fastapi import APIRouter

from src.api.deps import Vouchers
from src.schemas.voucher import VoucherInfo, VoucherValidateRequest, VoucherValidateResponse

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.post(
    "/validate",
    response_model=VoucherValidateResponse,
    summary="Validate a voucher",
    description="Check whether a voucher applies to an order amount and return the discount.",
)
async def validate_voucher(data: VoucherValidateRequest, service: Vouchers) -> VoucherValidateResponse:
    """Validate a voucher code.

    A rejected voucher is a normal 200 response with ``valid`` false and a
    reason.
    """
    result = await service.validate(data.code, data.order_amount, user_email=data.user_email)
    voucher = result["voucher"]

    return VoucherValidateResponse(
        valid=result["valid"],
        discount_amount=float(result["discount_amount"]),
        final_amount=float(result["final_amount"]),
        reason=result["reason"],
        voucher=VoucherInfo(
            code=voucher["code"],
            discount_type=voucher["discount_type"],
            discount_value=float(voucher["discount_value"]),
        )
        if result["valid"]
        else None,
    )
