# healthnet/models/drug.py
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field


class DrugStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"


class Drug(SQLModel, table=True):
    """
    Pharmacy catalog entry.

    Stock and status are coupled:
      - stock reaching 0 flips status to out_of_stock
      - only a restock flips out_of_stock back to active

    Both fields are written by the inventory service only.
    """

    __tablename__ = "drugs"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    name: str = Field(
        max_length=255,
        index=True,
    )

    slug: str = Field(
        max_length=255,
        unique=True,
        index=True,
        description="URL-friendly identifier (unique)",
    )

    description: str | None = None

    price: Decimal = Field(
        default=Decimal("0.00"),
        max_digits=10,
        decimal_places=2,
        ge=0,
    )

    stock: int = Field(
        default=0,
        ge=0,
        description="Units currently on hand",
    )

    # active | inactive | out_of_stock
    status: str = Field(
        default=DrugStatus.ACTIVE.value,
        index=True,
    )

    expiry_date: date | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime | None = None
