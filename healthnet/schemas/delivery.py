# healthnet/schemas/delivery.py
import uuid
from decimal import Decimal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from healthnet.schemas.order import OrderRead


class DeliveryAreaRead(SQLModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None
    base_fee: Decimal
    is_active: bool
    sort_order: int
    landmarks: list[str] | None


class DeliveryAreaCreate(SQLModel):
    """
    Admin payload for a new delivery area.
    """

    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    base_fee: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    is_active: bool = True
    sort_order: int = Field(default=0, ge=0)
    landmarks: list[str] | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("code cannot be empty")
        return v


class DeliveryAreaUpdate(SQLModel):
    """
    Partial update; code is the key and cannot change.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    base_fee: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    is_active: bool | None = None
    sort_order: int | None = Field(default=None, ge=0)
    landmarks: list[str] | None = None


class DeliveryFeeRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    area_code: str | None = None
    order_value: Decimal = Field(ge=0)


class DeliveryFeeQuote(SQLModel):
    area_code: str | None
    area_name: str | None
    order_value: Decimal
    base_fee: Decimal
    delivery_fee: Decimal
    free_delivery: bool
    discount_applied: bool
    formatted_fee: str
    estimated_time: str


class AreaOrderCount(SQLModel):
    area_code: str
    area_name: str | None
    order_count: int


class DeliveryStatistics(SQLModel):
    orders_by_status: dict[str, int]
    orders_by_area: list[AreaOrderCount]
    active_areas: int


class DeliveryRoute(SQLModel):
    area_code: str
    area_name: str
    order_count: int
    total_value: Decimal
    orders: list[OrderRead]
