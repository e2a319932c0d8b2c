"""Admin order management routes."""

import logging

from fastapi import APIRouter, Query

from src.api.deps import AdminSession, Notifications, Orders
from src.schemas.order import (
    EmailResultResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderStatus,
    OrderStatusUpdate,
    ResendEmailRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="List all orders newest first, optionally filtered by status.",
)
async def list_orders(
    _: AdminSession,
    service: Orders,
    status: OrderStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> OrderListResponse:
    """List orders for the admin dashboard."""
    orders = await service.list_orders(status=status, limit=limit, offset=offset)
    items = [OrderResponse(**order) for order in orders]
    return OrderListResponse(items=items, total=len(items))


@router.get(
    "/stats",
    response_model=OrderStatsResponse,
    summary="Order statistics",
    description="Order counts per status and revenue from paid orders.",
)
async def order_stats(_: AdminSession, service: Orders) -> OrderStatsResponse:
    return OrderStatsResponse(**await service.get_stats())


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description=(
        "Move an order along pending, confirmed, production, shipped, delivered "
        "(or cancel it). Sends the matching status email when the status changes."
    ),
)
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    admin: AdminSession,
    service: Orders,
    notifications: Notifications,
) -> OrderResponse:
    """Change an order's status.

    Setting the status the order already has is accepted and changes
    nothing; tracking details are still saved.

    Raises:
        NotFoundError: 404 if the order does not exist.
        InvalidTransitionError: 409 if the move is not allowed.
    """
    order, changed = await service.transition(order_id, data.status)

    tracking = {
        key: value
        for key, value in (("tracking_number", data.tracking_number), ("tracking_url", data.tracking_url))
        if value is not None
    }
    if tracking:
        order = await service.update(order_id, tracking)
    if data.notes:
        order = await service.append_note(order_id, data.notes)

    if changed:
        logger.info("Admin %s moved order %s to %s", admin.user_id, order["order_number"], order["status"])
        await notifications.send_status_email(order)
        order = await service.get(order_id)

    return OrderResponse(**order)


@router.post(
    "/{order_id}/emails/resend",
    response_model=EmailResultResponse,
    summary="Resend an order email",
    description="Send one lifecycle email for an order again and record the outcome.",
)
async def resend_order_email(
    order_id: str,
    data: ResendEmailRequest,
    _: AdminSession,
    service: Orders,
    notifications: Notifications,
) -> EmailResultResponse:
    """Resend a lifecycle email.

    Raises:
        NotFoundError: 404 if the order does not exist.
    """
    order = await service.get(order_id)
    result = await notifications.resend(order, data.email_type)
    return EmailResultResponse(email_type=data.email_type, **result)
