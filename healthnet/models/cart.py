# healthnet/models/cart.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class Cart(SQLModel, table=True):
    """
    One cart per user, created lazily.

    Totals are derived from the items by CartService.recalculate_totals
    and are never set anywhere else.
    """

    __tablename__ = "carts"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        unique=True,
        index=True,
    )

    subtotal: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total_amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total_items: int = Field(default=0, ge=0)

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class CartItem(SQLModel, table=True):
    """
    Cart line.
    One cart cannot have 2 rows for the same drug.

    unit_price is the drug price when first added; it is not re-synced.
    """

    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("cart_id", "drug_id", name="uq_cart_items_cart_drug"),)

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    cart_id: uuid.UUID = Field(
        foreign_key="carts.id",
        index=True,
    )

    drug_id: uuid.UUID = Field(
        foreign_key="drugs.id",
        index=True,
    )

    quantity: int = Field(
        gt=0,
        description="Must be >= 1",
    )

    unit_price: Decimal = Field(
        max_digits=10,
        decimal_places=2,
        description="Price when added to cart",
    )

    total_price: Decimal = Field(
        max_digits=10,
        decimal_places=2,
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
