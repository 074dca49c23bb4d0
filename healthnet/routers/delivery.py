# healthnet/routers/delivery.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from healthnet.core.auth import require_admin
from healthnet.database import get_session
from healthnet.routers.dependencies import delivery_service as service
from healthnet.schemas.delivery import (
    DeliveryAreaCreate,
    DeliveryAreaRead,
    DeliveryAreaUpdate,
    DeliveryFeeQuote,
    DeliveryFeeRequest,
    DeliveryRoute,
    DeliveryStatistics,
)
from healthnet.schemas.order import OrderRead

router = APIRouter(prefix="/delivery", tags=["Delivery"])
admin_router = APIRouter(
    prefix="/admin/delivery",
    tags=["Admin Delivery"],
    dependencies=[Depends(require_admin)],
)


# -------- Public endpoints --------


@router.get("/areas", response_model=list[DeliveryAreaRead])
def list_delivery_areas(session: Session = Depends(get_session)):
    """
    Active delivery areas ordered by sort_order, then name.
    """
    return service.list_areas(session)


@router.post("/calculate-fee", response_model=DeliveryFeeQuote)
def calculate_delivery_fee(
    payload: DeliveryFeeRequest,
    session: Session = Depends(get_session),
):
    """
    Quote the delivery fee for an area and order value.

    Unknown or inactive areas fall back to the default fee.
    """
    return service.quote(session, payload.area_code, payload.order_value)


# -------- Admin endpoints --------


@admin_router.get("/statistics", response_model=DeliveryStatistics)
def delivery_statistics(session: Session = Depends(get_session)):
    return service.get_statistics(session)


@admin_router.get("/routes", response_model=list[DeliveryRoute])
def delivery_routes(session: Session = Depends(get_session)):
    """
    Open orders grouped per area, busiest area first.
    """
    return service.get_routes(session)


@admin_router.get("/areas/{code}/orders", response_model=list[OrderRead])
def orders_by_area(code: str, session: Session = Depends(get_session)):
    return service.get_orders_by_area(session, code)


@admin_router.post(
    "/areas",
    response_model=DeliveryAreaRead,
    status_code=status.HTTP_201_CREATED,
)
def create_delivery_area(
    payload: DeliveryAreaCreate,
    session: Session = Depends(get_session),
):
    return service.create_area(session, payload)


@admin_router.patch("/areas/{code}", response_model=DeliveryAreaRead)
def update_delivery_area(
    code: str,
    payload: DeliveryAreaUpdate,
    session: Session = Depends(get_session),
):
    return service.update_area(session, code, payload)


@admin_router.patch("/areas/{code}/toggle", response_model=DeliveryAreaRead)
def toggle_delivery_area(code: str, session: Session = Depends(get_session)):
    return service.toggle_area(session, code)
