# healthnet/routers/admin_orders.py
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from healthnet.core.auth import require_admin
from healthnet.database import get_session
from healthnet.models.order import OrderPaymentStatus, OrderStatus
from healthnet.models.user import User
from healthnet.routers.dependencies import order_service as service
from healthnet.schemas.order import OrderRead, OrderStatusUpdate, OrderWithItemsRead
from healthnet.schemas.stats import OrderAnalytics

router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"])


@router.get(
    "",
    response_model=list[OrderRead],
    dependencies=[Depends(require_admin)],
)
def list_all_orders(
    session: Session = Depends(get_session),
    status: OrderStatus | None = None,
    payment_status: OrderPaymentStatus | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    search: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(15, ge=1, le=100),
):
    """
    List all orders (admin only).

    search matches order number, customer name or email.
    """
    return service.list_all_orders(
        session,
        status=status,
        payment_status=payment_status,
        from_date=from_date,
        to_date=to_date,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/analytics",
    response_model=OrderAnalytics,
    dependencies=[Depends(require_admin)],
)
def order_analytics(session: Session = Depends(get_session)):
    return service.get_analytics(session)


@router.get(
    "/requires-attention",
    response_model=list[OrderRead],
    dependencies=[Depends(require_admin)],
)
def orders_requiring_attention(session: Session = Depends(get_session)):
    """
    Paid orders waiting more than 24h to ship, or deliveries older than 3 days.
    """
    return service.get_orders_requiring_attention(session)


@router.get(
    "/{order_id}",
    response_model=OrderWithItemsRead,
    dependencies=[Depends(require_admin)],
)
def get_order_admin(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return service.get_order_admin(session, order_id)


@router.patch(
    "/{order_id}/status",
    response_model=OrderWithItemsRead,
)
def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Update order status (admin only).

      placed     -> delivering, cancelled

      delivering -> delivered, cancelled

      delivered  -> (terminal)

      cancelled  -> (terminal)

    Cancelling returns the items to stock.
    """
    return service.change_status(session, order_id, payload, admin)


@router.post(
    "/{order_id}/mark-delivering",
    response_model=OrderWithItemsRead,
)
def mark_delivering(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Send a placed, paid order out for delivery.
    """
    return service.send_for_delivery(session, order_id, admin)
