# healthnet/routers/orders.py
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from healthnet.core.auth import require_user
from healthnet.database import get_session
from healthnet.models.order import OrderStatus
from healthnet.models.user import User
from healthnet.routers.dependencies import order_service as service
from healthnet.schemas.order import (
    CheckoutCreate,
    OrderCreate,
    OrderRead,
    OrderWithItemsRead,
)
from healthnet.schemas.stats import OrderStatistics

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
)
def place_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Create an order from an explicit list of items.

    Prices, tax and delivery fee are computed server-side.
    """
    return service.place_order(session, current_user, payload)


@router.post(
    "/checkout",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
)
def checkout(
    payload: CheckoutCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Create an order from the current user's cart; the cart is emptied.

    Auth:
      - Only role='user' (customer) can checkout.
    """
    return service.checkout(session, current_user, payload)


@router.get(
    "/me",
    response_model=list[OrderRead],
)
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
    status: OrderStatus | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(15, ge=1, le=100),
):
    """
    List the authenticated user's orders (without items).
    """
    return service.list_user_orders(
        session,
        current_user.id,
        status=status,
        from_date=from_date,
        to_date=to_date,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/me/statistics",
    response_model=OrderStatistics,
)
def my_order_statistics(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    return service.get_statistics(session, user_id=current_user.id)


@router.get(
    "/me/{order_id}",
    response_model=OrderWithItemsRead,
)
def get_my_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Get a single order (with items) belonging to the current user.
    """
    return service.get_user_order(session, current_user.id, order_id)


@router.post(
    "/me/{order_id}/confirm-delivery",
    response_model=OrderWithItemsRead,
)
def confirm_delivery(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Customer confirms receipt; the order must be out for delivery.
    """
    return service.confirm_my_delivery(session, current_user, order_id)
