# healthnet/routers/cart.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from healthnet.core.auth import require_user
from healthnet.database import get_session
from healthnet.models.user import User
from healthnet.schemas.cart import CartItemCreate, CartItemUpdate, CartRead, CartValidation
from healthnet.routers.dependencies import cart_service as service

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.get("", response_model=CartRead)
def get_my_cart(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Get current user's cart (created on first access).

    Auth:
      - Only role='user' (customer) can access.
      - Admins are forbidden.
    """
    return service.get_cart(session, current_user.id)


@router.post("", response_model=CartRead)
def add_to_cart(
    payload: CartItemCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Add a drug to the current user's cart.

    Adding a drug already in the cart increases its quantity.
    """
    return service.add_to_cart(session, current_user.id, payload)


@router.get("/validate", response_model=CartValidation)
def validate_cart(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Report unavailable drugs, stock shortfalls and price changes.

    Nothing is modified.
    """
    return service.validate_cart(session, current_user.id)


@router.patch("/items/{item_id}", response_model=CartRead)
def update_cart_item(
    item_id: uuid.UUID,
    payload: CartItemUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Update quantity of a cart item; quantity <= 0 removes it.
    """
    return service.update_cart_item(session, current_user.id, item_id, payload)


@router.delete("/items/{item_id}", response_model=CartRead)
def remove_cart_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    return service.remove_cart_item(session, current_user.id, item_id)


@router.delete("", response_model=CartRead)
def clear_cart(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_user),
):
    """
    Clear the entire cart.

    Returns an empty cart with zeroed totals.
    """
    return service.clear_cart(session, current_user.id)
