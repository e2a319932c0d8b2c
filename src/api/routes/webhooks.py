"""Webhook API routes for external service integrations."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.api.deps import Payments
from src.services.payment_service import WebhookFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives and processes Stripe payment events. Requires valid signature.",
)
async def stripe_webhook(request: Request, service: Payments) -> dict[str, bool]:
    """Handle Stripe webhook events.

    Handles:
    - payment_intent.succeeded: confirms the order (creating it from the
      intent metadata if it is missing) and records the payment
    - payment_intent.payment_failed: cancels a pending order and records
      the failed attempt

    Other event types are acknowledged and ignored. Errors while applying a
    success event propagate as 500 so Stripe redelivers it; reconciliation
    is idempotent.

    Args:
        request: FastAPI request object for reading raw body and headers.
        service: Payment service.

    Returns:
        dict: Acknowledgment.

    Raises:
        HTTPException: 400 if the signature header is missing or invalid.
    """
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    try:
        event = service.verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.error("Invalid webhook signature: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e

    event_type = event.get("type", "")
    logger.info("Processing Stripe webhook event: %s (%s)", event_type, event.get("id"))

    payment_event = service.event_from_webhook(event)
    if payment_event is None:
        logger.debug("Unhandled webhook event type: %s", event_type)
        return {"received": True}

    if isinstance(payment_event, WebhookFailed):
        try:
            await service.reconcile(payment_event)
        except Exception as e:
            logger.error("Failed to process %s: %s", event_type, str(e), exc_info=True)
        return {"received": True}

    await service.reconcile(payment_event)
    logger.info("Processed %s", event_type)
    return {"received": True}
