"""Order ledger: durable orders, pricing and the status state machine."""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import (
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.order import Order, OrderCreate, OrderUpdate

logger = logging.getLogger(__name__)

# Forward path; cancelled is reachable from any non-terminal status
STATUS_FLOW = ("pending", "confirmed", "production", "shipped", "delivered")
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})
ORDER_STATUSES = frozenset(STATUS_FLOW) | {"cancelled"}

# Columns that only this service may set
PROTECTED_FIELDS = frozenset({"id", "order_number", "status", "created_at", "updated_at"})

REQUIRED_SHIPPING_FIELDS = ("address_line1", "city", "postal_code", "country")

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_LENGTH = 8
MAX_ORDER_NUMBER_ATTEMPTS = 5

# Bound on compare-and-set retries when the status keeps changing
MAX_TRANSITION_ATTEMPTS = 5

CENTS = Decimal("0.01")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def can_transition(current: str, new: str) -> bool:
    """Whether the state machine allows current -> new.

    Same-status requests are handled by the caller as no-ops.
    """
    if current in TERMINAL_STATUSES or new not in ORDER_STATUSES:
        return False
    if new == "cancelled":
        return True
    return STATUS_FLOW.index(new) == STATUS_FLOW.index(current) + 1


def calculate_pricing(
    quantity: int,
    discount: Decimal = Decimal(0),
    settings: Settings | None = None,
) -> dict[str, float]:
    """Compute the pricing breakdown for an order.

    Args:
        quantity: Number of cards.
        discount: Voucher discount applied to the gross total.
        settings: Settings carrying unit price, shipping fee and tax rate.

    Returns:
        dict: subtotal, shipping, tax, discount, total rounded to cents.
    """
    settings = settings or get_settings()
    subtotal = (settings.unit_price * quantity).quantize(CENTS, rounding=ROUND_HALF_UP)
    shipping = settings.shipping_fee.quantize(CENTS)
    tax = (subtotal * settings.tax_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    gross = subtotal + shipping + tax
    discount = min(max(Decimal(str(discount)), Decimal(0)), gross).quantize(CENTS, rounding=ROUND_HALF_UP)
    return {
        "subtotal": float(subtotal),
        "shipping": float(shipping),
        "tax": float(tax),
        "discount": float(discount),
        "total": float(gross - discount),
    }


def gross_total(quantity: int, settings: Settings | None = None) -> Decimal:
    """Order amount before any voucher discount."""
    pricing = calculate_pricing(quantity, settings=settings)
    return Decimal(str(pricing["total"]))


def estimate_delivery(now: datetime | None = None, lead_days: int | None = None) -> str:
    """Estimated delivery date, e.g. ``Sat, Oct 25, 2026``."""
    now = now or datetime.now(timezone.utc)
    if lead_days is None:
        lead_days = get_settings().delivery_lead_days
    return (now + timedelta(days=lead_days)).strftime("%a, %b %d, %Y")


def _strip_fields(fields: dict[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (fields or {}).items() if v is not None and k not in PROTECTED_FIELDS}


class OrderService:
    """Service for orders and their status transitions."""

    def __init__(self, client: Client | None = None, settings: Settings | None = None) -> None:
        self.client = client or get_supabase_client()
        self.settings = settings or get_settings()

    def generate_order_number(self) -> str:
        suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_LENGTH))
        return f"{self.settings.order_number_prefix}-{suffix}"

    async def get(self, order_id: str) -> Order:
        """Get an order by ID.

        Raises:
            NotFoundError: If no such order exists.
        """
        response = (
            self.client.table("orders")
            .select("*")
            .eq("id", order_id)
            .maybe_single()
            .execute()
        )
        if not response or not response.data:
            raise NotFoundError(f"Order {order_id} not found")
        return response.data

    async def get_by_order_number(self, order_number: str) -> Order | None:
        response = (
            self.client.table("orders")
            .select("*")
            .eq("order_number", order_number.strip().upper())
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_payment_id(self, payment_intent_id: str) -> Order | None:
        response = (
            self.client.table("orders")
            .select("*")
            .eq("payment_id", payment_intent_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def create(self, fields: OrderCreate) -> Order:
        """Create an order with a fresh, unique order number.

        Args:
            fields: Order columns. ``status`` may be pending (default) or
                confirmed; other protected columns are ignored.

        Returns:
            dict: The created order.

        Raises:
            ValidationError: If customer or shipping details are missing.
        """
        status = fields.get("status") or "pending"
        if status not in ("pending", "confirmed"):
            raise ValidationError(f"Orders cannot be created with status '{status}'")

        missing = [name for name in ("customer_name", "email") if not fields.get(name)]
        shipping = fields.get("shipping_address") or {}
        missing += [f"shipping_address.{name}" for name in REQUIRED_SHIPPING_FIELDS if not shipping.get(name)]
        if not fields.get("card_config"):
            missing.append("card_config")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        data = _strip_fields(fields)
        data["status"] = status
        data["email"] = data["email"].strip().lower()
        data.setdefault("emails_sent", {})
        data.setdefault(
            "estimated_delivery",
            estimate_delivery(lead_days=self.settings.delivery_lead_days),
        )

        for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
            order_number = self.generate_order_number()
            if await self.get_by_order_number(order_number):
                continue
            try:
                response = (
                    self.client.table("orders")
                    .insert({**data, "order_number": order_number})
                    .execute()
                )
            except Exception as e:
                if is_unique_violation(e) and "order_number" in f"{e.message} {e.details}":
                    logger.warning("Order number %s collided on insert, regenerating", order_number)
                    continue
                raise
            order = response.data[0]
            logger.info("Created order %s (%s) with status %s", order["order_number"], order["id"], status)
            await self._record_history(order["id"], None, status, fields.get("notes"))
            return order

        raise ExternalServiceError("database", "Could not allocate a unique order number", transient=True)

    async def update(self, order_id: str, fields: OrderUpdate) -> Order:
        """Merge non-null fields into an order.

        ``status`` and ``order_number`` are never changed here.

        Raises:
            NotFoundError: If no such order exists.
        """
        data = _strip_fields(fields)
        if not data:
            return await self.get(order_id)

        data["updated_at"] = _now_iso()
        response = (
            self.client.table("orders")
            .update(data)
            .eq("id", order_id)
            .execute()
        )
        if not response.data:
            raise NotFoundError(f"Order {order_id} not found")
        return response.data[0]

    async def transition(
        self,
        order_id: str,
        new_status: str,
        extra: dict[str, Any] | None = None,
        only_from: frozenset[str] | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Move an order to a new status with a compare-and-set.

        The update only applies while the row still has the status it was
        read with, so two concurrent finalisations cannot both win.

        Args:
            order_id: Order to update.
            new_status: Target status.
            extra: Non-status fields written together with the status.
            only_from: If given, leave the order untouched unless its current
                status is one of these.

        Returns:
            tuple: (order, changed). ``changed`` is False when the order was
            already in ``new_status`` or excluded by ``only_from``; ``extra``
            is then not applied.

        Raises:
            NotFoundError: If no such order exists.
            InvalidTransitionError: If the state machine forbids the move.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            order = await self.get(order_id)
            current = order["status"]
            if current == new_status or (only_from is not None and current not in only_from):
                return order, False
            if not can_transition(current, new_status):
                raise InvalidTransitionError(current, new_status)

            data = _strip_fields(extra)
            data["status"] = new_status
            data["updated_at"] = _now_iso()
            response = (
                self.client.table("orders")
                .update(data)
                .eq("id", order_id)
                .eq("status", current)
                .execute()
            )
            if response.data:
                logger.info("Order %s moved %s -> %s", order["order_number"], current, new_status)
                await self._record_history(order_id, current, new_status, data.get("notes"))
                return response.data[0], True

            logger.debug("Order %s status changed concurrently, re-reading", order_id)

        raise ExternalServiceError("database", f"Order {order_id} kept changing status", transient=True)

    async def update_status(
        self,
        order_id: str,
        new_status: str,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Change an order's status. Repeating the current status is a no-op."""
        order, _ = await self.transition(order_id, new_status, extra)
        return order

    async def append_note(self, order_id: str, note: str) -> dict[str, Any]:
        order = await self.get(order_id)
        notes = f"{order['notes']}\n{note}" if order.get("notes") else note
        return await self.update(order_id, {"notes": notes})

    async def record_emails(self, order_id: str, results: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """Merge email outcomes into ``emails_sent`` keyed by email type."""
        order = await self.get(order_id)
        emails_sent = {**(order.get("emails_sent") or {}), **results}
        return await self.update(order_id, {"emails_sent": emails_sent})

    async def list_for_customer(self, user_id: str | None, email: str | None) -> list[dict[str, Any]]:
        """Orders placed by a user, matched by user ID or email."""
        orders: dict[str, dict[str, Any]] = {}
        for column, value in (("user_id", user_id), ("email", email.lower() if email else None)):
            if not value:
                continue
            response = (
                self.client.table("orders")
                .select("*")
                .eq(column, value)
                .order("created_at", desc=True)
                .execute()
            )
            for order in response.data or []:
                orders[order["id"]] = order
        return sorted(orders.values(), key=lambda o: str(o.get("created_at") or ""), reverse=True)

    async def list_orders(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Orders newest first, optionally filtered by status."""
        query = self.client.table("orders").select("*")
        if status:
            query = query.eq("status", status)
        response = (
            query.order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return response.data or []

    async def get_stats(self) -> dict[str, Any]:
        """Order counts per status and revenue from paid orders."""
        response = self.client.table("orders").select("status, pricing").execute()
        counts = {status: 0 for status in sorted(ORDER_STATUSES)}
        revenue = Decimal(0)
        for order in response.data or []:
            counts[order["status"]] = counts.get(order["status"], 0) + 1
            if order["status"] not in ("pending", "cancelled"):
                revenue += Decimal(str((order.get("pricing") or {}).get("total", 0)))
        return {
            "total_orders": sum(counts.values()),
            "status_counts": counts,
            "revenue": float(revenue.quantize(CENTS)),
        }

    async def _record_history(
        self,
        order_id: str,
        from_status: str | None,
        to_status: str,
        note: str | None = None,
    ) -> None:
        try:
            self.client.table("order_status_history").insert({
                "order_id": order_id,
                "from_status": from_status,
                "to_status": to_status,
                "note": note,
            }).execute()
        except Exception as e:
            logger.warning("Failed to record status history for order %s: %s", order_id, str(e))
