# healthnet/repositories/order_repo.py
import uuid
from datetime import datetime

from sqlalchemy import and_, or_, update
from sqlmodel import Session, select

from healthnet.models.order import Order, OrderItem, OrderPaymentStatus, OrderStatus
from healthnet.models.user import User


class OrderRepository:
    """
    Data access layer for orders and order_items.

    NOTE:
      - No commits here; order creation is a multi-step transaction.
        The service is responsible for calling session.commit().
    """

    # ---- Orders ----

    def list_for_user(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        status: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[Order]:
        stmt = select(Order).where(Order.user_id == user_id)
        stmt = self._apply_filters(stmt, status=status, from_date=from_date, to_date=to_date)
        stmt = stmt.order_by(Order.placed_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_all(
        self,
        session: Session,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[Order]:
        stmt = select(Order)
        stmt = self._apply_filters(stmt, status=status, from_date=from_date, to_date=to_date)
        if payment_status:
            stmt = stmt.where(Order.payment_status == payment_status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.join(User, User.id == Order.user_id).where(
                or_(
                    Order.order_number.ilike(pattern),
                    User.name.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )
        stmt = stmt.order_by(Order.placed_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_requiring_attention(
        self,
        session: Session,
        *,
        placed_before: datetime,
        delivering_since_before: datetime,
        limit: int = 10,
    ) -> list[Order]:
        """
        Paid orders still waiting to ship, or deliveries that stalled.
        """
        stmt = (
            select(Order)
            .where(
                or_(
                    and_(
                        Order.status == OrderStatus.PLACED.value,
                        Order.payment_status == OrderPaymentStatus.PAID.value,
                        Order.placed_at <= placed_before,
                    ),
                    and_(
                        Order.status == OrderStatus.DELIVERING.value,
                        Order.status_updated_at <= delivering_since_before,
                    ),
                )
            )
            .order_by(Order.placed_at.asc())
            .limit(limit)
        )
        return list(session.exec(stmt).all())

    def list_open_for_area(self, session: Session, area_code: str) -> list[Order]:
        stmt = (
            select(Order)
            .where(
                Order.delivery_area == area_code,
                Order.status.in_([OrderStatus.PLACED.value, OrderStatus.DELIVERING.value]),
            )
            .order_by(Order.placed_at.asc())
        )
        return list(session.exec(stmt).all())

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def order_number_exists(self, session: Session, order_number: str) -> bool:
        stmt = select(Order.id).where(Order.order_number == order_number)
        return session.exec(stmt).first() is not None

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()  # Assign PK
        session.refresh(order)
        return order

    def transition_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        current: str,
        target: str,
        **values,
    ) -> bool:
        """
        Move status from `current` to `target` only if nobody else moved it.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        return session.exec(stmt).rowcount == 1

    def mark_paid(self, session: Session, order_id: uuid.UUID) -> bool:
        """
        Flip payment_status to paid unless it already is.

        Returns False when another reconciliation already did it.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status != OrderPaymentStatus.PAID.value,
            )
            .values(payment_status=OrderPaymentStatus.PAID.value)
            .execution_options(synchronize_session=False)
        )
        return session.exec(stmt).rowcount == 1

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id)
        return list(session.exec(stmt).all())

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        for item in items:
            session.refresh(item)
        return items

    # ---- helpers ----

    @staticmethod
    def _apply_filters(stmt, *, status=None, from_date=None, to_date=None):
        if status:
            stmt = stmt.where(Order.status == status)
        if from_date:
            stmt = stmt.where(Order.placed_at >= from_date)
        if to_date:
            stmt = stmt.where(Order.placed_at <= to_date)
        return stmt
