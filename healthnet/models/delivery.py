# healthnet/models/delivery.py
import uuid
from decimal import Decimal

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class DeliveryArea(SQLModel, table=True):
    """
    In-city delivery zone with a base fee.

    Orders reference areas by code only.
    """

    __tablename__ = "delivery_areas"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    code: str = Field(
        unique=True,
        index=True,
        max_length=50,
    )

    name: str = Field(max_length=255)
    description: str | None = None

    base_fee: Decimal = Field(
        default=Decimal("0.00"),
        max_digits=10,
        decimal_places=2,
    )

    is_active: bool = Field(default=True, index=True)
    sort_order: int = Field(default=0, ge=0)

    landmarks: list[str] | None = Field(default=None, sa_column=Column(JSON))
