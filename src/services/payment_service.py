"""Payment reconciliation for the client confirmation and webhook paths.

Both paths feed a purchase finalisation event into ``reconcile``. The
order's status compare-and-set decides a single winner for the move into
``confirmed``; only the winner sends the lifecycle emails. The succeeded
payment and the voucher redemption are written by whichever call finds them
missing, with unique indexes on payments (payment_intent_id, status) and
voucher_usage (order_id) settling races between the two.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

import stripe
from supabase import Client

from src.api.middleware.error_handler import (
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.core.stripe import from_minor_units, get_stripe
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.payment import Payment
from src.services.notification_service import NotificationService
from src.services.order_service import OrderService, calculate_pricing
from src.services.voucher_service import VoucherService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientConfirmed:
    """The customer's browser reports a completed payment for an order."""

    order_id: str
    payment_intent_id: str
    amount: int
    currency: str
    payment_method: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookConfirmed:
    """Stripe reports ``payment_intent.succeeded``."""

    intent: dict[str, Any]


@dataclass(frozen=True)
class WebhookFailed:
    """Stripe reports ``payment_intent.payment_failed``."""

    intent: dict[str, Any]


PaymentEvent = Union[ClientConfirmed, WebhookConfirmed, WebhookFailed]


@dataclass
class _PaymentFacts:
    payment_intent_id: str
    amount: int
    currency: str
    payment_method: str | None
    metadata: dict[str, Any]
    order_id: str | None
    email: str | None
    failure_reason: str | None = None


def _facts(event: PaymentEvent) -> _PaymentFacts:
    if isinstance(event, ClientConfirmed):
        return _PaymentFacts(
            payment_intent_id=event.payment_intent_id,
            amount=event.amount,
            currency=event.currency,
            payment_method=event.payment_method,
            metadata=dict(event.metadata),
            order_id=event.order_id,
            email=None,
        )

    intent = event.intent
    metadata = dict(intent.get("metadata") or {})
    method_types = intent.get("payment_method_types") or []
    failure_reason = None
    if isinstance(event, WebhookFailed):
        last_error = intent.get("last_payment_error") or {}
        failure_reason = last_error.get("message") or "Unknown payment error"
    return _PaymentFacts(
        payment_intent_id=intent["id"],
        amount=int(intent.get("amount") or 0),
        currency=intent.get("currency") or "usd",
        payment_method=method_types[0] if method_types else None,
        metadata=metadata,
        order_id=metadata.get("order_id") or metadata.get("orderId"),
        email=intent.get("receipt_email") or metadata.get("email"),
        failure_reason=failure_reason,
    )


class PaymentService:
    """Service reconciling payment events with orders."""

    def __init__(
        self,
        client: Client | None = None,
        order_service: OrderService | None = None,
        voucher_service: VoucherService | None = None,
        notification_service: NotificationService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.client = client or get_supabase_client()
        self.settings = settings or get_settings()
        self.stripe = get_stripe()
        self.order_service = order_service or OrderService(self.client, self.settings)
        self.voucher_service = voucher_service or VoucherService(self.client)
        self.notification_service = notification_service or NotificationService(
            order_service=self.order_service,
            settings=self.settings,
        )

    def verify_webhook_signature(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify a Stripe webhook and return the event as a plain dict.

        Raises:
            ValueError: The secret is missing or the signature does not match.
        """
        if not self.settings.stripe_webhook_secret:
            raise ValueError("Stripe webhook secret is not configured")
        try:
            event = self.stripe.Webhook.construct_event(
                payload,
                sig_header,
                self.settings.stripe_webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid signature: {e}") from e

        if isinstance(event, dict):
            return event
        return json.loads(str(event))

    @staticmethod
    def event_from_webhook(event: dict[str, Any]) -> PaymentEvent | None:
        """Map a verified Stripe event to a payment event, or None to ignore it."""
        event_type = event.get("type", "")
        intent = (event.get("data") or {}).get("object") or {}
        if event_type == "payment_intent.succeeded":
            return WebhookConfirmed(intent=intent)
        if event_type == "payment_intent.payment_failed":
            return WebhookFailed(intent=intent)
        return None

    async def reconcile(self, event: PaymentEvent) -> dict[str, Any] | None:
        """Apply a payment event. Safe to call repeatedly for the same event.

        Returns:
            dict | None: The payment row written, or the existing one when
            the event had already been applied.
        """
        if isinstance(event, WebhookFailed):
            return await self.record_failure(event)
        return await self.record_success(event)

    async def record_success(self, event: ClientConfirmed | WebhookConfirmed) -> dict[str, Any] | None:
        """Ensure exactly one confirmed order and one succeeded payment.

        Raises:
            NotFoundError: A client confirmation names an unknown order.
            ValidationError: The payment belongs to a different order.
        """
        facts = _facts(event)
        order, created = await self._find_or_create_order(facts, from_client=isinstance(event, ClientConfirmed))
        if order is None:
            logger.error("Payment %s succeeded but no order could be found or created", facts.payment_intent_id)
            return await self._insert_payment(facts, None, "succeeded")

        if order.get("payment_id") and order["payment_id"] != facts.payment_intent_id:
            raise ValidationError("Payment does not belong to this order")

        if created:
            changed = True
        else:
            order, changed = await self._confirm(order, facts)

        if order["status"] == "cancelled":
            return await self._record_late_success(order, facts)

        if not changed:
            return await self._ensure_recorded(order, facts)

        payment = await self._insert_payment(facts, order["id"], "succeeded")
        await self._redeem_voucher(order)
        try:
            await self.notification_service.send_lifecycle_emails(order)
        except Exception as e:
            logger.error("Lifecycle emails for order %s failed: %s", order["order_number"], str(e))
        return payment

    async def record_failure(self, event: WebhookFailed) -> dict[str, Any] | None:
        """Cancel a correlated pending order and store a failed payment.

        Never sends notifications.
        """
        facts = _facts(event)
        order = await self._correlate(facts)

        if order is None:
            logger.warning("Failed payment %s has no matching order", facts.payment_intent_id)
        elif order["status"] == "pending":
            note = f"Payment failed: {facts.failure_reason}"
            notes = f"{order['notes']}\n{note}" if order.get("notes") else note
            order, changed = await self.order_service.transition(
                order["id"],
                "cancelled",
                {"notes": notes},
                only_from=frozenset({"pending"}),
            )
            if not changed:
                logger.warning(
                    "Order %s moved to %s before payment failure %s was applied",
                    order["order_number"],
                    order["status"],
                    facts.payment_intent_id,
                )
        else:
            logger.info(
                "Ignoring failed payment %s for order %s in status %s",
                facts.payment_intent_id,
                order["order_number"],
                order["status"],
            )

        existing = await self.get_payment(facts.payment_intent_id, "failed")
        if existing:
            logger.info("Failed payment %s already recorded", facts.payment_intent_id)
            return existing
        return await self._insert_payment(facts, order["id"] if order else None, "failed")

    async def confirm_from_client(self, order_id: str, payment_intent_id: str) -> dict[str, Any]:
        """Finalise an order after the browser reports a completed payment.

        The PaymentIntent is re-read from Stripe; the client's word alone is
        never trusted.

        Returns:
            dict: The order after reconciliation.

        Raises:
            ValidationError: The intent has not succeeded or belongs elsewhere.
            ExternalServiceError: Stripe could not be reached.
        """
        try:
            intent = self.stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving payment intent %s: %s", payment_intent_id, str(e))
            raise ExternalServiceError("Stripe", str(e)) from e

        if intent["status"] != "succeeded":
            raise ValidationError(f"Payment has not succeeded (status: {intent['status']})")

        metadata = dict(intent.get("metadata") or {})
        if metadata.get("order_id") and metadata["order_id"] != order_id:
            raise ValidationError("Payment does not belong to this order")

        method_types = intent.get("payment_method_types") or []
        await self.reconcile(ClientConfirmed(
            order_id=order_id,
            payment_intent_id=intent["id"],
            amount=int(intent["amount"]),
            currency=intent.get("currency") or self.settings.currency,
            payment_method=method_types[0] if method_types else None,
            metadata=metadata,
        ))
        return await self.order_service.get(order_id)

    async def get_payment(self, payment_intent_id: str, status: str) -> Payment | None:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("payment_intent_id", payment_intent_id)
            .eq("status", status)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def list_for_order(self, order_id: str) -> list[Payment]:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("order_id", order_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def _correlate(self, facts: _PaymentFacts) -> dict[str, Any] | None:
        if facts.order_id:
            try:
                return await self.order_service.get(facts.order_id)
            except NotFoundError:
                logger.warning("Payment %s names unknown order %s", facts.payment_intent_id, facts.order_id)
        return await self.order_service.get_by_payment_id(facts.payment_intent_id)

    async def _find_or_create_order(
        self,
        facts: _PaymentFacts,
        from_client: bool,
    ) -> tuple[dict[str, Any] | None, bool]:
        if from_client:
            return await self.order_service.get(facts.order_id), False

        order = await self._correlate(facts)
        if order is not None:
            return order, False
        if not facts.email:
            return None, False

        try:
            order = await self.order_service.create(self._order_from_metadata(facts))
        except Exception as e:
            if not is_unique_violation(e):
                raise
            # Another delivery created it first
            order = await self.order_service.get_by_payment_id(facts.payment_intent_id)
            return order, False
        logger.info("Created order %s from payment %s", order["order_number"], facts.payment_intent_id)
        return order, True

    def _order_from_metadata(self, facts: _PaymentFacts) -> dict[str, Any]:
        md = facts.metadata
        email = facts.email.strip().lower()
        quantity = int(md.get("quantity") or 1)
        pricing = calculate_pricing(quantity, Decimal(str(md.get("discount") or 0)), self.settings)
        pricing["total"] = float(from_minor_units(facts.amount))
        return {
            "status": "confirmed",
            "customer_name": md.get("customer_name") or email.split("@")[0],
            "email": email,
            "phone": md.get("phone") or None,
            "card_config": {
                "first_name": md.get("first_name") or "Customer",
                "last_name": md.get("last_name") or "",
                "title": md.get("title") or None,
                "quantity": quantity,
            },
            "shipping_address": {
                "address_line1": md.get("address_line1") or "Address Line 1",
                "address_line2": md.get("address_line2") or None,
                "city": md.get("city") or "City",
                "state": md.get("state") or None,
                "postal_code": md.get("postal_code") or "00000",
                "country": md.get("country") or "Country",
            },
            "pricing": pricing,
            "payment_method": facts.payment_method,
            "payment_id": facts.payment_intent_id,
            "voucher_code": md.get("voucher_code") or None,
            "voucher_discount": float(md["discount"]) if md.get("discount") else None,
            "notes": "Created from payment webhook; verify shipping details",
        }

    async def _confirm(self, order: dict[str, Any], facts: _PaymentFacts) -> tuple[dict[str, Any], bool]:
        extra = {"payment_id": facts.payment_intent_id, "payment_method": facts.payment_method}
        return await self.order_service.transition(
            order["id"],
            "confirmed",
            extra,
            only_from=frozenset({"pending"}),
        )

    async def _ensure_recorded(self, order: dict[str, Any], facts: _PaymentFacts) -> Payment | None:
        """Backfill the payment and voucher use of an order confirmed elsewhere.

        Covers an order moved past pending by another path (an admin, or a
        finaliser whose payment write failed). Emails stay with whoever won
        the move into confirmed.
        """
        payment = await self.get_payment(facts.payment_intent_id, "succeeded")
        if payment is not None:
            logger.info(
                "Order %s already %s; payment %s already reconciled",
                order["order_number"],
                order["status"],
                facts.payment_intent_id,
            )
            return payment

        logger.warning(
            "Order %s is %s but payment %s was never recorded; recording it now",
            order["order_number"],
            order["status"],
            facts.payment_intent_id,
        )
        payment = await self._insert_payment(facts, order["id"], "succeeded")
        await self._redeem_voucher(order)
        return payment

    async def _record_late_success(self, order: dict[str, Any], facts: _PaymentFacts) -> dict[str, Any] | None:
        existing = await self.get_payment(facts.payment_intent_id, "succeeded")
        if existing:
            return existing
        logger.warning(
            "Payment %s succeeded for cancelled order %s; flagged for manual review",
            facts.payment_intent_id,
            order["order_number"],
        )
        payment = await self._insert_payment(facts, order["id"], "succeeded")
        try:
            await self.order_service.append_note(
                order["id"],
                f"Payment {facts.payment_intent_id} succeeded after cancellation; needs manual review",
            )
        except Exception as e:
            logger.error("Failed to flag order %s for review: %s", order["id"], str(e))
        return payment

    async def _insert_payment(self, facts: _PaymentFacts, order_id: str | None, status: str) -> Payment | None:
        try:
            response = (
                self.client.table("payments")
                .insert({
                    "order_id": order_id,
                    "payment_intent_id": facts.payment_intent_id,
                    "amount": facts.amount,
                    "currency": facts.currency,
                    "status": status,
                    "payment_method": facts.payment_method,
                    "failure_reason": facts.failure_reason,
                    "metadata": facts.metadata,
                })
                .execute()
            )
            return response.data[0]
        except Exception as e:
            if is_unique_violation(e):
                # Written concurrently by the other finalisation path
                return await self.get_payment(facts.payment_intent_id, status)
            logger.error("Failed to record %s payment %s: %s", status, facts.payment_intent_id, str(e))
            return None

    async def _redeem_voucher(self, order: dict[str, Any]) -> None:
        code = order.get("voucher_code")
        if not code:
            return
        try:
            voucher = await self.voucher_service.get_by_code(code)
            if not voucher:
                logger.warning("Order %s used unknown voucher %s", order["order_number"], code)
                return
            if await self.voucher_service.get_usage_for_order(order["id"]):
                logger.info("Voucher %s already redeemed on order %s", code, order["order_number"])
                return
            await self.voucher_service.record_redemption(
                voucher["id"],
                order.get("user_id"),
                order.get("email"),
                order["id"],
                order.get("voucher_discount") or 0,
            )
        except Exception as e:
            logger.error("Failed to redeem voucher %s for order %s: %s", code, order["order_number"], str(e))
