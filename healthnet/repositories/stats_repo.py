# healthnet/repositories/stats_repo.py
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from healthnet.models.order import Order, OrderItem, OrderPaymentStatus


class StatsRepository:
    """
    Read-only aggregated queries over orders for the admin dashboards
    and the per-user order summary.
    """

    def count_orders_by_status(
        self,
        session: Session,
        user_id: uuid.UUID | None = None,
    ) -> dict[str, int]:
        stmt = select(Order.status, func.count(Order.id)).group_by(Order.status)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        # SQLModel's Session.exec() -> rows of (status, count)
        return {status: int(count or 0) for status, count in session.exec(stmt).all()}

    def total_revenue(
        self,
        session: Session,
        user_id: uuid.UUID | None = None,
    ) -> Decimal:
        """
        Sum of total_amount over paid orders only.
        """
        stmt = select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.payment_status == OrderPaymentStatus.PAID.value
        )
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        value = session.exec(stmt).one()
        return Decimal(str(value or 0))

    def count_orders_since(self, session: Session, since: datetime) -> int:
        stmt = select(func.count()).select_from(Order).where(Order.placed_at >= since)
        value = session.exec(stmt).one()
        return int(value or 0)

    def top_selling_drugs(
        self,
        session: Session,
        limit: int = 5,
    ) -> list[tuple]:
        """
        Top drugs by quantity sold across paid orders.

        Grouped on the order item snapshot so deleted drugs still count.
        """
        qty_sum = func.coalesce(func.sum(OrderItem.quantity), 0)
        revenue_sum = func.coalesce(func.sum(OrderItem.total_price), 0)

        stmt = (
            select(
                OrderItem.drug_id,
                OrderItem.drug_name,
                qty_sum.label("total_quantity"),
                revenue_sum.label("total_revenue"),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.payment_status == OrderPaymentStatus.PAID.value)
            .group_by(OrderItem.drug_id, OrderItem.drug_name)
            .order_by(qty_sum.desc())
            .limit(limit)
        )

        return list(session.exec(stmt).all())

    def latest_orders(
        self,
        session: Session,
        limit: int = 5,
    ) -> list[Order]:
        """
        Latest N orders by placed_at (any status).
        """
        stmt = (
            select(Order)
            .order_by(Order.placed_at.desc())
            .limit(limit)
        )
        return list(session.exec(stmt).all())
