"""Voucher validation, discount arithmetic and redemption."""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import ExternalServiceError, NotFoundError, ValidationError
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.voucher import Voucher, VoucherUsage

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Voucher not found"
REASON_INACTIVE = "Voucher inactive"
REASON_NOT_STARTED = "Voucher not started"
REASON_EXPIRED = "Voucher expired"
REASON_USAGE_LIMIT = "Usage limit exceeded"
REASON_MIN_ORDER = "Minimum order value not met"
REASON_USER_LIMIT = "User limit exceeded"

# Compare-and-set retries on used_count before giving up
MAX_CAS_ATTEMPTS = 5

CENTS = Decimal("0.01")


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_discount(voucher: dict[str, Any], order_amount: Decimal) -> Decimal:
    """Discount for an order amount, clamped to the voucher cap and the amount."""
    value = _money(voucher.get("discount_value"))
    if voucher.get("discount_type") == "percentage":
        discount = order_amount * value / Decimal(100)
    else:
        discount = value

    max_discount = voucher.get("max_discount_amount")
    if max_discount is not None:
        discount = min(discount, _money(max_discount))

    discount = min(max(discount, Decimal(0)), order_amount)
    return discount.quantize(CENTS, rounding=ROUND_HALF_UP)


class VoucherService:
    """Service for discount vouchers."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def get_by_code(self, code: str) -> Voucher | None:
        response = (
            self.client.table("vouchers")
            .select("*")
            .eq("code", code.strip().upper())
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_id(self, voucher_id: str) -> Voucher | None:
        response = (
            self.client.table("vouchers")
            .select("*")
            .eq("id", voucher_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_usage_for_order(self, order_id: str) -> VoucherUsage | None:
        response = (
            self.client.table("voucher_usage")
            .select("*")
            .eq("order_id", order_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def count_user_redemptions(self, voucher_id: str, user_email: str) -> int:
        response = (
            self.client.table("voucher_usage")
            .select("id")
            .eq("voucher_id", voucher_id)
            .eq("user_email", user_email.strip().lower())
            .execute()
        )
        return len(response.data or [])

    async def validate(
        self,
        code: str,
        order_amount: Decimal | float,
        user_email: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Check whether a voucher applies and compute its discount.

        Checks run in order: existence, active flag, validity window,
        usage cap, minimum order value, per-user cap.

        Args:
            code: Voucher code, case-insensitive.
            order_amount: Amount the discount applies to.
            user_email: Customer email for the per-user cap.
            now: Reference time (defaults to the current UTC time).

        Returns:
            dict: valid, discount_amount, final_amount, reason and voucher.
        """
        amount = _money(order_amount)
        now = now or datetime.now(timezone.utc)

        voucher = await self.get_by_code(code)
        reason = self._rejection_reason(voucher, amount, now)
        if reason is None and user_email and voucher.get("user_limit") is not None:
            used_by_user = await self.count_user_redemptions(voucher["id"], user_email)
            if used_by_user >= voucher["user_limit"]:
                reason = REASON_USER_LIMIT

        if reason is not None:
            logger.info("Voucher %s rejected: %s", code, reason)
            return {
                "valid": False,
                "discount_amount": Decimal("0.00"),
                "final_amount": amount.quantize(CENTS),
                "reason": reason,
                "voucher": voucher,
            }

        discount = compute_discount(voucher, amount)
        return {
            "valid": True,
            "discount_amount": discount,
            "final_amount": max(amount - discount, Decimal(0)).quantize(CENTS),
            "reason": None,
            "voucher": voucher,
        }

    @staticmethod
    def _rejection_reason(voucher: dict[str, Any] | None, amount: Decimal, now: datetime) -> str | None:
        if not voucher:
            return REASON_NOT_FOUND
        if not voucher.get("is_active", False):
            return REASON_INACTIVE

        valid_from = _parse_timestamp(voucher.get("valid_from"))
        if valid_from and now < valid_from:
            return REASON_NOT_STARTED
        valid_until = _parse_timestamp(voucher.get("valid_until"))
        if valid_until and now > valid_until:
            return REASON_EXPIRED

        usage_limit = voucher.get("usage_limit")
        if usage_limit is not None and (voucher.get("used_count") or 0) >= usage_limit:
            return REASON_USAGE_LIMIT

        if amount < _money(voucher.get("min_order_value")):
            return REASON_MIN_ORDER
        return None

    async def record_redemption(
        self,
        voucher_id: str,
        user_id: str | None,
        user_email: str | None,
        order_id: str,
        discount_amount: Decimal | float,
    ) -> dict[str, Any]:
        """Claim one use of a voucher and record it.

        ``used_count`` is incremented with a compare-and-set so concurrent
        redemptions can never push it past ``usage_limit``. If the usage
        row cannot be written the claimed slot is released again.

        Returns:
            dict: The voucher_usage row, or the existing one when the order
            had already redeemed a voucher.

        Raises:
            NotFoundError: Unknown voucher.
            ValidationError: The usage limit is already reached.
            ExternalServiceError: The counter kept changing under us.
        """
        await self._claim_slot(voucher_id)

        try:
            response = (
                self.client.table("voucher_usage")
                .insert({
                    "voucher_id": voucher_id,
                    "user_id": user_id,
                    "user_email": user_email.strip().lower() if user_email else None,
                    "order_id": order_id,
                    "discount_amount": float(_money(discount_amount)),
                })
                .execute()
            )
        except Exception as e:
            await self._release_slot(voucher_id)
            if is_unique_violation(e):
                logger.info("Voucher %s already redeemed on order %s; slot released", voucher_id, order_id)
                return await self.get_usage_for_order(order_id)
            logger.error("Failed to record usage of voucher %s for order %s; slot released", voucher_id, order_id)
            raise

        logger.info("Voucher %s redeemed on order %s", voucher_id, order_id)
        return response.data[0]

    async def _claim_slot(self, voucher_id: str) -> int:
        for _ in range(MAX_CAS_ATTEMPTS):
            voucher = await self.get_by_id(voucher_id)
            if not voucher:
                raise NotFoundError(REASON_NOT_FOUND)

            used = voucher.get("used_count") or 0
            limit = voucher.get("usage_limit")
            if limit is not None and used >= limit:
                raise ValidationError(REASON_USAGE_LIMIT)

            response = (
                self.client.table("vouchers")
                .update({"used_count": used + 1})
                .eq("id", voucher_id)
                .eq("used_count", used)
                .execute()
            )
            if response.data:
                return used + 1
            logger.debug("used_count of voucher %s changed concurrently, retrying", voucher_id)

        raise ExternalServiceError("database", f"Could not update usage of voucher {voucher_id}", transient=True)

    async def _release_slot(self, voucher_id: str) -> None:
        for _ in range(MAX_CAS_ATTEMPTS):
            voucher = await self.get_by_id(voucher_id)
            used = (voucher or {}).get("used_count") or 0
            if used <= 0:
                return
            response = (
                self.client.table("vouchers")
                .update({"used_count": used - 1})
                .eq("id", voucher_id)
                .eq("used_count", used)
                .execute()
            )
            if response.data:
                return
        logger.error("Could not release usage slot of voucher %s", voucher_id)
