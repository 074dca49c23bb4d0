# healthnet/schemas/drug.py
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

StockOperation = Literal["set", "add", "subtract"]


class DrugInventoryRead(SQLModel):
    """
    Inventory view of a drug (admin).
    """

    id: uuid.UUID
    name: str
    slug: str
    price: Decimal
    stock: int
    status: str
    expiry_date: date | None
    updated_at: datetime | None


class StockUpdate(SQLModel):
    """
    Admin payload to change stock.

      - set: overwrite with quantity
      - add: restock by quantity
      - subtract: write off quantity (never below zero)
    """

    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(ge=0)
    operation: StockOperation
    reason: str | None = Field(default=None, max_length=255)

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class StockUpdateResult(SQLModel):
    drug: DrugInventoryRead
    old_stock: int
    new_stock: int
    operation: StockOperation


class BulkStockUpdateItem(SQLModel):
    model_config = ConfigDict(extra="forbid")

    drug_id: uuid.UUID
    quantity: int = Field(ge=0)
    operation: StockOperation


class BulkStockUpdate(SQLModel):
    """
    Several stock changes applied in one transaction.

    Lines are independent: a missing drug or a subtract below zero fails
    that line only.
    """

    model_config = ConfigDict(extra="forbid")

    updates: list[BulkStockUpdateItem] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=255)


class BulkStockLineResult(SQLModel):
    drug_id: uuid.UUID
    drug_name: str
    old_stock: int
    new_stock: int
    status: str


class BulkStockLineError(SQLModel):
    drug_id: uuid.UUID
    code: str
    error: str


class BulkStockUpdateResult(SQLModel):
    status: Literal["success", "partial_success"]
    successful_updates: int
    failed_updates: int
    results: list[BulkStockLineResult]
    errors: list[BulkStockLineError]


class StockStatusSummary(SQLModel):
    count: int
    total_quantity: int
    total_value: Decimal


class InventoryReport(SQLModel):
    """
    Stock valuation at generated_at; items only in the detailed format.
    """

    generated_at: datetime
    format: Literal["summary", "detailed"]
    include_inactive: bool
    total_items: int
    total_quantity: int
    total_stock_value: Decimal
    by_status: dict[str, StockStatusSummary]
    items: list[DrugInventoryRead] | None = None
