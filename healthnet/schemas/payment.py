# healthnet/schemas/payment.py
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict
from sqlmodel import SQLModel, Field


class PaymentInitialize(SQLModel):
    model_config = ConfigDict(extra="forbid")

    order_id: uuid.UUID


class PaymentVerify(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reference: str = Field(min_length=1)


class PaymentInitialized(SQLModel):
    """
    What the client needs to hand the customer over to the gateway.
    """

    payment_id: uuid.UUID
    payment_reference: str
    authorization_url: str
    access_code: str | None
    amount: Decimal
    formatted_amount: str
    currency: str


class PaymentRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    payment_reference: str
    gateway_reference: str | None
    amount: Decimal
    currency: str
    status: str
    channel: str | None
    gateway_response: str | None
    fees: Decimal | None
    card_type: str | None
    last4: str | None
    bank: str | None
    paid_at: datetime | None
    failed_at: datetime | None
    created_at: datetime


class PaymentDetail(PaymentRead):
    order_number: str
    order_payment_status: str


class PaymentVerifyResult(SQLModel):
    """
    Outcome of a verify call.

    applied is False when the payment was already settled by another
    path (webhook, callback or an earlier verify).
    """

    payment: PaymentRead
    order_payment_status: str
    applied: bool
    transaction_successful: bool


class FeeRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class FeeQuote(SQLModel):
    amount: Decimal
    fee: Decimal
    total: Decimal
    formatted_amount: str
    formatted_fee: str
    formatted_total: str
