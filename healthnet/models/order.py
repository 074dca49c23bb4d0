# healthnet/models/order.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field


class OrderStatus(str, Enum):
    PLACED = "placed"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# delivered and cancelled are terminal
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PLACED: frozenset({OrderStatus.DELIVERING, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERING: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition_to(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PLACED: "Order Placed",
    OrderStatus.DELIVERING: "Delivering",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    OrderStatus.PLACED: "Your order has been placed and is being processed",
    OrderStatus.DELIVERING: "Your order is on the way",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


class Order(SQLModel, table=True):
    """
    Customer order.

    Monetary fields are frozen at creation. After that only status
    (state machine), payment_status (payment reconciliation) and
    delivered_at change.

    delivery_area stores the area code, not a foreign key, so renaming or
    deleting an area never touches historical orders.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_number: str = Field(
        unique=True,
        index=True,
        max_length=32,
    )

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )

    subtotal: Decimal = Field(max_digits=10, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    delivery_fee: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total_amount: Decimal = Field(max_digits=10, decimal_places=2)
    total_items: int = Field(ge=0)

    # placed | delivering | delivered | cancelled
    status: str = Field(
        default=OrderStatus.PLACED.value,
        index=True,
    )
    status_updated_at: datetime | None = None
    status_updated_by: uuid.UUID | None = None

    # pending | paid | failed | refunded
    payment_status: str = Field(
        default=OrderPaymentStatus.PENDING.value,
        index=True,
    )

    phone_number: str = Field(max_length=20)
    delivery_notes: str | None = None
    delivery_area: str | None = Field(default=None, index=True, max_length=100)
    delivery_address: str
    landmark: str | None = None

    placed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        index=True,
    )
    delivered_at: datetime | None = None


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order.

    drug_name / drug_slug / drug_description / unit_price are a snapshot
    taken when the order was placed. drug_id is deliberately not a foreign
    key so catalog deletions leave history intact.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    drug_id: uuid.UUID = Field(index=True)
    drug_name: str
    drug_slug: str
    drug_description: str | None = None

    quantity: int = Field(
        gt=0,
        description="Quantity ordered (>=1)",
    )

    unit_price: Decimal = Field(
        max_digits=10,
        decimal_places=2,
        description="Unit price at time of order (pre-tax)",
    )
    total_price: Decimal = Field(max_digits=10, decimal_places=2)
