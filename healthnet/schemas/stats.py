# healthnet/schemas/stats.py
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict
from sqlmodel import SQLModel

from healthnet.models.order import OrderStatus


class TopSellingDrug(SQLModel):
    """
    Aggregated sales for one drug over paid orders.
    """
    model_config = ConfigDict(extra="forbid")

    drug_id: uuid.UUID
    name: str
    total_quantity: int
    total_revenue: Decimal


class LatestOrderSummary(SQLModel):
    """
    Lightweight info for last N orders.
    """
    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    order_number: str
    placed_at: datetime
    user_id: uuid.UUID
    total_amount: Decimal
    status: OrderStatus
    payment_status: str


class OrderStatistics(SQLModel):
    """
    Counts per status plus revenue over paid orders.
    """
    model_config = ConfigDict(extra="forbid")

    total_orders: int
    placed: int
    delivering: int
    delivered: int
    cancelled: int
    total_revenue: Decimal


class OrderAnalytics(SQLModel):
    """
    Full payload for the admin order dashboard.
    """
    model_config = ConfigDict(extra="forbid")

    statistics: OrderStatistics
    orders_last_7_days: int
    top_drugs: list[TopSellingDrug]
    latest_orders: list[LatestOrderSummary]


class InventoryStatistics(SQLModel):
    model_config = ConfigDict(extra="forbid")

    total_drugs: int
    active_drugs: int
    in_stock: int
    out_of_stock: int
    low_stock: int
    low_stock_threshold: int
    stock_value: Decimal
    top_selling: list[TopSellingDrug]
