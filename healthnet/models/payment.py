# healthnet/models/payment.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Payment(SQLModel, table=True):
    """
    One payment attempt for an order.

    An order may collect several attempts (retries after failure); at most
    one of them ends in success. After creation the row is only changed by
    PaymentService reconciliation.
    """

    __tablename__ = "payments"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    payment_reference: str = Field(unique=True, index=True, max_length=64)
    gateway_reference: str | None = Field(default=None, index=True, max_length=100)
    access_code: str | None = None
    authorization_url: str | None = None

    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="GHS", max_length=3)

    # pending | processing | success | failed | cancelled | refunded
    status: str = Field(
        default=PaymentStatus.PENDING.value,
        index=True,
    )

    channel: str | None = None
    payment_method: str | None = None
    gateway_response: str | None = Field(
        default=None,
        description="Gateway's human readable message",
    )
    gateway_payload: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    gateway_metadata: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    fees: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)
    authorization_code: str | None = None
    last4: str | None = None
    exp_month: str | None = None
    exp_year: str | None = None
    card_type: str | None = None
    bank: str | None = None

    paid_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime | None = None


class PaymentLog(SQLModel, table=True):
    """
    Audit trail of every gateway interaction for a payment.
    """

    __tablename__ = "payment_logs"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    payment_id: uuid.UUID = Field(foreign_key="payments.id", index=True)

    # initialize | verify | callback | webhook
    event_type: str = Field(index=True)
    status: str

    request_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    response_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
