"""Checkout: pricing, voucher, pending order and PaymentIntent."""

import logging
from decimal import Decimal
from typing import Any

import stripe

from src.api.middleware.error_handler import ExternalServiceError, ValidationError
from src.core.config import Settings, get_settings
from src.core.stripe import get_stripe, to_minor_units
from src.services.order_service import OrderService, calculate_pricing, gross_total
from src.services.user_service import UserService
from src.services.voucher_service import VoucherService

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service for creating orders and their Stripe PaymentIntents."""

    def __init__(
        self,
        order_service: OrderService | None = None,
        voucher_service: VoucherService | None = None,
        user_service: UserService | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize checkout service with collaborators."""
        self.settings = settings or get_settings()
        self.stripe = get_stripe()
        self.order_service = order_service or OrderService(settings=self.settings)
        self.voucher_service = voucher_service or VoucherService(self.order_service.client)
        self.user_service = user_service or UserService(self.order_service.client)

    async def create_checkout(self, request: dict[str, Any], user_id: str | None = None) -> dict[str, Any]:
        """Create a pending order and a PaymentIntent for it.

        The order is written first so every PaymentIntent carries the ID
        of the order it pays for.

        Args:
            request: Validated checkout payload (CheckoutRequest.model_dump()).
            user_id: ID of the logged-in user, if any.

        Returns:
            dict: order_id, order_number, client_secret, payment_intent_id, pricing.

        Raises:
            ValidationError: If the voucher does not apply or Stripe is not configured.
            ExternalServiceError: If Stripe rejects the PaymentIntent.
        """
        if not self.settings.stripe_secret_key:
            raise ValidationError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        card_config = request["card_config"]
        quantity = int(card_config.get("quantity") or 1)
        email = request["email"].strip().lower()

        discount = Decimal(0)
        voucher_code = None
        if request.get("voucher_code"):
            result = await self.voucher_service.validate(
                request["voucher_code"],
                gross_total(quantity, self.settings),
                user_email=email,
            )
            if not result["valid"]:
                raise ValidationError(result["reason"])
            discount = result["discount_amount"]
            voucher_code = result["voucher"]["code"]

        pricing = calculate_pricing(quantity, discount, self.settings)
        if pricing["total"] <= 0:
            raise ValidationError("Order total must be greater than zero")

        if user_id is None:
            try:
                user = await self.user_service.upsert_by_email(
                    email,
                    first_name=card_config.get("first_name"),
                    last_name=card_config.get("last_name"),
                    phone_number=request.get("phone"),
                )
                user_id = user["id"]
            except Exception as e:
                logger.warning("Could not upsert customer %s: %s", email, str(e))

        order = await self.order_service.create({
            "user_id": user_id,
            "customer_name": request["customer_name"],
            "email": email,
            "phone": request.get("phone"),
            "card_config": card_config,
            "shipping_address": request["shipping_address"],
            "pricing": pricing,
            "payment_method": "card",
            "voucher_code": voucher_code,
            "voucher_discount": float(discount) if voucher_code else None,
        })

        try:
            intent = self.stripe.PaymentIntent.create(
                amount=to_minor_units(pricing["total"]),
                currency=self.settings.currency,
                receipt_email=email,
                automatic_payment_methods={"enabled": True},
                metadata={
                    "order_id": order["id"],
                    "order_number": order["order_number"],
                    "email": email,
                    "customer_name": request["customer_name"],
                    "quantity": str(quantity),
                    "voucher_code": voucher_code or "",
                    "discount": str(pricing["discount"]),
                },
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating payment intent for %s: %s", order["order_number"], str(e))
            await self.order_service.transition(
                order["id"],
                "cancelled",
                {"notes": f"Payment intent creation failed: {e}"},
            )
            raise ExternalServiceError("Stripe", str(e)) from e

        await self.order_service.update(order["id"], {"payment_id": intent["id"]})
        logger.info("Checkout started for order %s, intent %s", order["order_number"], intent["id"])

        return {
            "order_id": order["id"],
            "order_number": order["order_number"],
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["id"],
            "pricing": pricing,
        }
