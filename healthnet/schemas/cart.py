# healthnet/schemas/cart.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import ConfigDict
from sqlmodel import SQLModel, Field

CartIssueType = Literal["no_longer_available", "insufficient_stock", "price_changed"]


class CartItemCreate(SQLModel):
    """
    Payload for adding to cart.
    """

    model_config = ConfigDict(extra="forbid")

    drug_id: uuid.UUID
    quantity: int = Field(default=1, gt=0)


class CartItemUpdate(SQLModel):
    """
    Payload for updating quantity of a cart item.

    quantity <= 0 removes the item.
    """

    model_config = ConfigDict(extra="forbid")

    quantity: int


class CartItemRead(SQLModel):
    """
    Read model for a single cart item.
    """

    id: uuid.UUID
    cart_id: uuid.UUID
    drug_id: uuid.UUID
    drug_name: str | None = None
    drug_slug: str | None = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    created_at: datetime


class CartRead(SQLModel):
    """
    Full cart response model with derived totals.
    """

    id: uuid.UUID
    user_id: uuid.UUID
    items: list[CartItemRead]
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    total_items: int
    updated_at: datetime


class CartIssue(SQLModel):
    item_id: uuid.UUID
    drug_id: uuid.UUID
    drug_name: str | None = None
    type: CartIssueType
    message: str
    requested: int | None = None
    available: int | None = None
    old_price: Decimal | None = None
    new_price: Decimal | None = None


class CartValidation(SQLModel):
    valid: bool
    issues: list[CartIssue]
