"""Checkout and customer order API routes."""

from typing import Any

from fastapi import APIRouter, status

from src.api.deps import Checkout, CurrentSession, OptionalSession, Orders, Payments
from src.api.middleware.error_handler import AuthorizationError, NotFoundError
from src.schemas.order import (
    CheckoutRequest,
    CheckoutResponse,
    OrderConfirmRequest,
    OrderListResponse,
    OrderResponse,
)
from src.services.session_store import Session

router = APIRouter(prefix="/checkout", tags=["checkout"])
orders_router = APIRouter(prefix="/orders", tags=["orders"])


def _ensure_can_view(order: dict[str, Any], session: Session) -> None:
    if session.is_admin:
        return
    if order.get("user_id") and order["user_id"] == session.user_id:
        return
    if session.email and order.get("email", "").lower() == session.email.lower():
        return
    raise AuthorizationError("You do not have access to this order")


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Create a pending order and a Stripe PaymentIntent. Works for guests and logged-in users.",
)
async def create_checkout(
    data: CheckoutRequest,
    service: Checkout,
    session: OptionalSession,
) -> CheckoutResponse:
    """Create a pending order and its PaymentIntent.

    The frontend completes the payment with the returned client secret and
    then calls ``POST /orders/{id}/confirm``.

    Raises:
        ValidationError: 400 if the voucher does not apply or pricing is invalid.
        ExternalServiceError: 502 if Stripe rejects the PaymentIntent.
    """
    user_id = session.user_id if session and not session.is_admin else None
    result = await service.create_checkout(data.model_dump(), user_id=user_id)
    return CheckoutResponse(**result)


@orders_router.post(
    "/{order_id}/confirm",
    response_model=OrderResponse,
    summary="Confirm payment",
    description="Finalise an order after the client completed its PaymentIntent. Idempotent.",
)
async def confirm_order(order_id: str, data: OrderConfirmRequest, service: Payments) -> OrderResponse:
    """Confirm an order from the client side.

    Raises:
        NotFoundError: 404 if the order does not exist.
        ValidationError: 400 if the payment has not succeeded or belongs elsewhere.
        ExternalServiceError: 502 if Stripe cannot be reached.
    """
    order = await service.confirm_from_client(order_id, data.payment_intent_id)
    return OrderResponse(**order)


@orders_router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="List orders placed by the logged-in user, newest first.",
)
async def list_my_orders(session: CurrentSession, service: Orders) -> OrderListResponse:
    """List the caller's orders."""
    orders = await service.list_for_customer(session.user_id, session.email)
    items = [OrderResponse(**order) for order in orders]
    return OrderListResponse(items=items, total=len(items))


@orders_router.get(
    "/by-number/{order_number}",
    response_model=OrderResponse,
    summary="Get order by number",
    description="Look up an order by its human-readable order number.",
)
async def get_order_by_number(order_number: str, session: CurrentSession, service: Orders) -> OrderResponse:
    """Get an order by order number.

    Raises:
        NotFoundError: 404 if not found.
        AuthorizationError: 403 if the order belongs to someone else.
    """
    order = await service.get_by_order_number(order_number)
    if order is None:
        raise NotFoundError(f"Order {order_number} not found")
    _ensure_can_view(order, session)
    return OrderResponse(**order)


@orders_router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
    description="Get one order. Only its owner or an admin may read it.",
)
async def get_order(order_id: str, session: CurrentSession, service: Orders) -> OrderResponse:
    """Get an order by ID.

    Raises:
        NotFoundError: 404 if not found.
        AuthorizationError: 403 if the order belongs to someone else.
    """
    order = await service.get(order_id)
    _ensure_can_view(order, session)
    return OrderResponse(**order)
