# healthnet/schemas/order.py
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from healthnet.models.order import OrderStatus


class OrderItemInput(SQLModel):
    model_config = ConfigDict(extra="forbid")

    drug_id: uuid.UUID
    quantity: int = Field(gt=0)


class DeliveryDetails(SQLModel):
    """
    Delivery fields shared by direct orders and cart checkout.

    Backend derives:
      - user_id from token
      - status = 'placed', payment_status = 'pending'
      - prices, tax and delivery fee from live data
    """

    model_config = ConfigDict(extra="forbid")

    phone_number: str = Field(max_length=20)
    delivery_address: str
    delivery_area: str | None = None
    landmark: str | None = None
    delivery_notes: str | None = None

    @field_validator("phone_number", "delivery_address")
    @classmethod
    def not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v

    @field_validator("delivery_area", "landmark", "delivery_notes", mode="before")
    @classmethod
    def normalize_optional(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class OrderCreate(DeliveryDetails):
    """
    Payload for ordering an explicit list of items (no cart involved).
    """

    items: list[OrderItemInput] = Field(min_length=1)


class CheckoutCreate(DeliveryDetails):
    """
    Payload for checking out the current cart.
    """

    pass


class OrderRead(SQLModel):
    """
    Lightweight representation of an order (without items).
    """

    id: uuid.UUID
    order_number: str
    user_id: uuid.UUID
    subtotal: Decimal
    tax_amount: Decimal
    delivery_fee: Decimal
    total_amount: Decimal
    total_items: int
    status: OrderStatus
    payment_status: str
    phone_number: str
    delivery_area: str | None
    delivery_address: str
    landmark: str | None
    delivery_notes: str | None
    placed_at: datetime
    delivered_at: datetime | None


class OrderItemRead(SQLModel):
    """
    Snapshot line item as stored at order time.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    drug_id: uuid.UUID
    drug_name: str
    drug_slug: str
    drug_description: str | None
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderWithItemsRead(OrderRead):
    """
    Full order view including items and display labels.
    """

    items: list[OrderItemRead]
    status_label: str
    status_description: str
    status_updated_at: datetime | None
    status_updated_by: uuid.UUID | None


class OrderStatusUpdate(SQLModel):
    """
    Admin payload to change order status.
    """

    model_config = ConfigDict(extra="forbid")

    status: OrderStatus
